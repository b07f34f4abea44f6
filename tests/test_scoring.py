# tests/test_scoring.py
import pytest

from academy.errors import InvalidScoreRange, MissingScoreComponent, ScoringError
from academy.scoring import (
    ScoringPolicy,
    TranscriptMetrics,
    adaptive_suggestion,
    apply_scores,
    compute_linguistic_score,
    decode_feedback,
    delivery_score,
    derive_content_score,
    describe_improvement,
    level_tier,
    pass_threshold,
    performance_tier,
    round_half_up,
    score_submission,
)


def test_low_level_submission_rounds_half_up():
    """L=5: linguistic 85.25 -> 85, overall 88.5 -> 89, passes at 60."""
    result = score_submission(5, content_score=90, grammar_score=80, sentence_score=85, vocabulary_score=90)
    assert result.linguistic_score == 85
    assert result.overall_score == 89
    assert result.pass_threshold == 60
    assert result.passed is True


def test_mid_level_submission():
    result = score_submission(25, content_score=90, grammar_score=80, sentence_score=85, vocabulary_score=90)
    assert result.overall_score == 88
    assert result.pass_threshold == 65
    assert result.passed is True


def test_high_level_submission_fails_below_threshold():
    result = score_submission(45, content_score=55, grammar_score=55, sentence_score=55, vocabulary_score=55)
    assert result.linguistic_score == 55
    assert result.overall_score == 55
    assert result.pass_threshold == 70
    assert result.passed is False


def test_pass_threshold_steps_at_tier_boundaries():
    assert [pass_threshold(level) for level in (1, 10, 11, 30, 31, 200)] == [60, 60, 65, 65, 70, 70]
    thresholds = [pass_threshold(level) for level in range(1, 60)]
    assert thresholds == sorted(thresholds)


def test_overall_score_is_integer_in_range():
    for level in (1, 10, 11, 30, 31, 99):
        for value in (0, 33.3, 50.5, 99.9, 100):
            result = score_submission(level, content_score=value, grammar_score=value,
                                      sentence_score=100 - value, vocabulary_score=value)
            assert isinstance(result.overall_score, int)
            assert 0 <= result.overall_score <= 100


def test_fractional_content_score_is_rounded_before_weighting():
    """Stored content/linguistic scores reproduce the stored overall score."""
    feedback = decode_feedback({
        "content_score": 84.5,
        "linguistic_analysis": {
            "grammar": {"score": 84},
            "sentence_formation": {"score": 84},
            "vocabulary": {"score": 84},
        },
    })
    result = apply_scores(feedback, 5)
    assert feedback.content_score == 85
    assert feedback.linguistic_score == 84
    assert result.overall_score == round_half_up(85 * 0.7 + 84 * 0.3)
    assert feedback.overall_score == 85


def test_round_half_up():
    assert round_half_up(88.5) == 89
    assert round_half_up(85.25) == 85
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3


def test_linguistic_weights():
    assert compute_linguistic_score(100, 0, 0) == 30
    assert compute_linguistic_score(0, 100, 100) == 70


def test_level_must_be_positive():
    with pytest.raises(ValueError):
        level_tier(0)


def test_missing_subscore_raises():
    with pytest.raises(MissingScoreComponent) as excinfo:
        score_submission(5, content_score=90, sentence_score=85, vocabulary_score=90)
    assert excinfo.value.component == "grammar"


def test_missing_subscore_uses_configured_fallback():
    policy = ScoringPolicy(missing_subscore_fallback=75)
    result = score_submission(5, content_score=90, sentence_score=75, vocabulary_score=75, policy=policy)
    assert result.grammar_score == 75
    assert result.linguistic_score == 75


def test_out_of_range_score_is_clamped():
    result = score_submission(5, content_score=90, grammar_score=120, sentence_score=85, vocabulary_score=-4)
    assert result.grammar_score == 100
    assert result.vocabulary_score == 0


def test_out_of_range_score_raises_when_clamping_disabled():
    policy = ScoringPolicy(clamp_out_of_range=False)
    with pytest.raises(InvalidScoreRange) as excinfo:
        score_submission(5, content_score=90, grammar_score=120, sentence_score=85, vocabulary_score=90, policy=policy)
    assert excinfo.value.component == "grammar"
    assert excinfo.value.value == 120


def test_non_numeric_score_is_invalid():
    with pytest.raises(InvalidScoreRange):
        score_submission(5, content_score=True, grammar_score=80, sentence_score=85, vocabulary_score=90)
    with pytest.raises(InvalidScoreRange):
        score_submission(5, content_score="high", grammar_score=80, sentence_score=85, vocabulary_score=90)


def test_content_score_derived_from_focus_areas():
    assert derive_content_score({"Clarity": 80, "Confidence": 91}) == 86
    result = score_submission(5, focus_area_scores={"Clarity": 80, "Confidence": 91},
                              grammar_score=80, sentence_score=85, vocabulary_score=90)
    assert result.content_score == 86


def test_content_score_required_without_focus_areas():
    with pytest.raises(MissingScoreComponent) as excinfo:
        score_submission(5, grammar_score=80, sentence_score=85, vocabulary_score=90)
    assert excinfo.value.component == "content_score"


def test_apply_scores_overwrites_ai_claims():
    feedback = decode_feedback({
        "content_score": 90,
        "overall_score": 12,
        "passed": False,
        "strengths": ["Clear opening"],
        "linguistic_analysis": {
            "grammar": {"score": 80, "suggestions": []},
            "sentence_formation": {"score": 85, "complexity_level": "moderate"},
            "vocabulary": {"score": 90, "advanced_words_used": ["eloquent"]},
        },
        "unexpected_key": "ignored",
    })
    result = apply_scores(feedback, 5)
    assert result.overall_score == 89
    assert feedback.overall_score == 89
    assert feedback.linguistic_score == 85
    assert feedback.passed is True
    assert feedback.performance_tier == "EXCELLENT"
    assert feedback.strengths == ["Clear opening"]


def test_apply_scores_missing_analysis_raises():
    feedback = decode_feedback({"content_score": 90, "linguistic_analysis": {"grammar": {"score": 80}}})
    with pytest.raises(MissingScoreComponent):
        apply_scores(feedback, 5)


def test_malformed_feedback_is_a_scoring_error():
    with pytest.raises(ScoringError):
        decode_feedback({"content_score": 90, "focus_area_scores": {"Clarity": "great"}})


def test_performance_tiers():
    assert performance_tier(89, 60)[0] == "EXCELLENT"
    assert performance_tier(65, 60)[0] == "GOOD"
    assert performance_tier(60, 60)[0] == "PASSED"
    assert performance_tier(56, 60)[0] == "NEARLY_THERE"
    assert performance_tier(54, 60)[0] == "NEEDS_PRACTICE"


def test_delivery_score_beginner():
    metrics = TranscriptMetrics(word_count=50, words_per_minute=120, filler_words=2)
    assert delivery_score(metrics, 5) == 94


def test_delivery_score_advanced_penalties():
    metrics = TranscriptMetrics(word_count=40, words_per_minute=70, filler_words=1)
    assert delivery_score(metrics, 45) == 53


def test_delivery_score_never_negative():
    metrics = TranscriptMetrics(word_count=0, words_per_minute=0, filler_words=30)
    assert delivery_score(metrics, 45) == 0


def test_improvement_messages():
    assert describe_improvement(70, 80)[0] == 10
    assert "improved by 10" in describe_improvement(70, 80)[1]
    assert describe_improvement(80, 80)[0] == 0
    assert describe_improvement(80, 75)[0] == -5


def test_adaptive_suggestion():
    assert "challenging lessons" in adaptive_suggestion(3, 92)
    assert "reviewing earlier lessons" in adaptive_suggestion(5, 40)
    assert adaptive_suggestion(2, 95) is None
    assert adaptive_suggestion(4, 40) is None
