"""
Scoring Engine
==============

Turns the AI judgement of a speaking submission into the numbers students see.

The AI returns a content score (task fulfilment and delivery, or per focus area
scores from which it is derived) and three linguistic sub-scores. They are
combined with fixed weights:

    linguistic = round(grammar * 0.30 + sentence * 0.35 + vocabulary * 0.35)
    overall    = round(content * w + linguistic * (1 - w))

where w depends on the lesson level (0.70 up to level 10, 0.60 up to level 30,
0.50 above). A lesson is passed when overall reaches the level's threshold
(60 / 65 / 70).

All arithmetic is done in Decimal and rounded half-up, so 88.5 always becomes 89.
Missing sub-scores raise MissingScoreComponent unless a fallback is configured;
out-of-range values are clamped with a warning (or raise InvalidScoreRange when
clamping is disabled).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidScoreRange, MissingScoreComponent, ScoringError
from .settings import settings


logger = logging.getLogger(__name__)

# ============================================================================
# WEIGHTS AND THRESHOLDS
# ============================================================================

GRAMMAR_WEIGHT = Decimal("0.30")
SENTENCE_WEIGHT = Decimal("0.35")
VOCABULARY_WEIGHT = Decimal("0.35")

# (highest lesson level of the tier, content weight, pass threshold)
LEVEL_TIERS: Tuple[Tuple[Optional[int], Decimal, int], ...] = (
	(10, Decimal("0.70"), 60),
	(30, Decimal("0.60"), 65),
	(None, Decimal("0.50"), 70),
)

MIN_SCORE = 0
MAX_SCORE = 100


def round_half_up(value: Any) -> int:
	"""Round to the nearest integer, halves away from zero (88.5 -> 89)."""
	return int(_to_decimal(value).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _to_decimal(value: Any) -> Decimal:
	if isinstance(value, Decimal):
		return value
	# str() keeps 0.35 as 0.35 instead of its binary approximation
	return Decimal(str(value))


def level_tier(level: int) -> int:
	"""Index of the difficulty tier a lesson level falls into (0, 1 or 2)."""
	if level < 1:
		raise ValueError(f"lesson level must be >= 1, got {level}")
	for index, (upper, _weight, _threshold) in enumerate(LEVEL_TIERS):
		if upper is None or level <= upper:
			return index
	return len(LEVEL_TIERS) - 1


def content_weight(level: int) -> Decimal:
	return LEVEL_TIERS[level_tier(level)][1]


def linguistic_weight(level: int) -> Decimal:
	return Decimal(1) - content_weight(level)


def pass_threshold(level: int) -> int:
	return LEVEL_TIERS[level_tier(level)][2]


# ============================================================================
# POLICY AND VALIDATION
# ============================================================================

@dataclass(frozen=True)
class ScoringPolicy:
	clamp_out_of_range: bool = True
	# Substituted for a missing grammar/sentence/vocabulary score when set
	missing_subscore_fallback: Optional[int] = None

	@classmethod
	def from_settings(cls) -> "ScoringPolicy":
		return cls(
			clamp_out_of_range=settings.score_clamp_out_of_range,
			missing_subscore_fallback=settings.missing_subscore_fallback,
		)


STRICT_POLICY = ScoringPolicy()


def check_score(component: str, value: Any, policy: ScoringPolicy = STRICT_POLICY) -> Decimal:
	"""Validate one AI supplied score and return it as a Decimal in [0, 100]."""
	if value is None:
		raise MissingScoreComponent(component)
	if isinstance(value, bool):
		raise InvalidScoreRange(component, value)
	try:
		number = _to_decimal(value)
	except (InvalidOperation, ValueError):
		raise InvalidScoreRange(component, value)
	if not number.is_finite():
		raise InvalidScoreRange(component, value)
	if MIN_SCORE <= number <= MAX_SCORE:
		return number
	if not policy.clamp_out_of_range:
		raise InvalidScoreRange(component, value)
	clamped = min(max(number, Decimal(MIN_SCORE)), Decimal(MAX_SCORE))
	logger.warning("Clamping %s score %s to %s", component, value, clamped)
	return clamped


def _subscore(component: str, value: Any, policy: ScoringPolicy) -> Decimal:
	if value is None and policy.missing_subscore_fallback is not None:
		logger.warning("Using fallback %s for missing %s score", policy.missing_subscore_fallback, component)
		value = policy.missing_subscore_fallback
	return check_score(component, value, policy)


# ============================================================================
# AGGREGATION
# ============================================================================

def derive_content_score(focus_area_scores: Mapping[str, Any], policy: ScoringPolicy = STRICT_POLICY) -> int:
	"""Content score as the rounded mean of the per focus area scores."""
	if not focus_area_scores:
		raise MissingScoreComponent("content_score")
	values = [check_score(f"focus_area:{name}", score, policy) for name, score in focus_area_scores.items()]
	return round_half_up(sum(values) / len(values))


def compute_linguistic_score(grammar: Any, sentence: Any, vocabulary: Any) -> int:
	return round_half_up(
		_to_decimal(grammar) * GRAMMAR_WEIGHT
		+ _to_decimal(sentence) * SENTENCE_WEIGHT
		+ _to_decimal(vocabulary) * VOCABULARY_WEIGHT
	)


def compute_overall_score(level: int, content: Any, linguistic: Any) -> int:
	return round_half_up(
		_to_decimal(content) * content_weight(level)
		+ _to_decimal(linguistic) * linguistic_weight(level)
	)


@dataclass(frozen=True)
class ScoreResult:
	level: int
	content_score: int
	grammar_score: int
	sentence_score: int
	vocabulary_score: int
	linguistic_score: int
	overall_score: int
	pass_threshold: int
	passed: bool


def score_submission(
	level: int,
	*,
	content_score: Any = None,
	focus_area_scores: Optional[Mapping[str, Any]] = None,
	grammar_score: Any = None,
	sentence_score: Any = None,
	vocabulary_score: Any = None,
	policy: ScoringPolicy = STRICT_POLICY,
) -> ScoreResult:
	if content_score is None:
		if not focus_area_scores:
			raise MissingScoreComponent("content_score")
		content = Decimal(derive_content_score(focus_area_scores, policy))
	else:
		# Overall is computed from the integer content score that gets stored
		content = Decimal(round_half_up(check_score("content_score", content_score, policy)))
	grammar = _subscore("grammar", grammar_score, policy)
	sentence = _subscore("sentence_formation", sentence_score, policy)
	vocabulary = _subscore("vocabulary", vocabulary_score, policy)

	linguistic = compute_linguistic_score(grammar, sentence, vocabulary)
	overall = compute_overall_score(level, content, linguistic)
	threshold = pass_threshold(level)
	return ScoreResult(
		level=level,
		content_score=round_half_up(content),
		grammar_score=round_half_up(grammar),
		sentence_score=round_half_up(sentence),
		vocabulary_score=round_half_up(vocabulary),
		linguistic_score=linguistic,
		overall_score=overall,
		pass_threshold=threshold,
		passed=overall >= threshold,
	)


# ============================================================================
# FEEDBACK STRUCTURE
# ============================================================================

class _Loose(BaseModel):
	model_config = ConfigDict(extra="ignore")


class SubScoreAnalysis(_Loose):
	score: Optional[float] = None
	suggestions: List[str] = Field(default_factory=list)


class SentenceFormationAnalysis(SubScoreAnalysis):
	complexity_level: Optional[str] = None


class VocabularyAnalysis(SubScoreAnalysis):
	advanced_words_used: List[str] = Field(default_factory=list)


class DeliveryAnalysis(SubScoreAnalysis):
	pace_quality: Optional[str] = None
	filler_word_frequency: Optional[str] = None


class LinguisticAnalysis(_Loose):
	grammar: Optional[SubScoreAnalysis] = None
	sentence_formation: Optional[SentenceFormationAnalysis] = None
	vocabulary: Optional[VocabularyAnalysis] = None
	delivery: Optional[DeliveryAnalysis] = None


class TranscriptMetrics(_Loose):
	word_count: int = 0
	words_per_minute: float = 0
	filler_words: int = 0
	pace_feedback: Optional[str] = None


class Feedback(_Loose):
	# Filled in by the engine; whatever the AI claims here is overwritten
	content_score: Optional[float] = None
	linguistic_score: Optional[int] = None
	overall_score: Optional[int] = None
	passed: Optional[bool] = None

	strengths: List[str] = Field(default_factory=list)
	improvements: List[str] = Field(default_factory=list)
	detailed_feedback: Optional[str] = None
	focus_area_scores: Dict[str, float] = Field(default_factory=dict)
	linguistic_analysis: LinguisticAnalysis = Field(default_factory=LinguisticAnalysis)
	transcript_metrics: Optional[TranscriptMetrics] = None

	delivery_score: Optional[int] = None
	performance_tier: Optional[str] = None
	tier_message: Optional[str] = None
	previous_score: Optional[int] = None
	improvement: Optional[int] = None
	improvement_message: Optional[str] = None
	adaptive_suggestion: Optional[str] = None


def decode_feedback(raw: Mapping[str, Any]) -> Feedback:
	try:
		return Feedback.model_validate(dict(raw))
	except ValidationError as err:
		raise ScoringError(f"malformed feedback payload: {err.error_count()} invalid field(s)") from err


def _analysis_score(analysis: Optional[SubScoreAnalysis]) -> Optional[float]:
	return analysis.score if analysis is not None else None


def apply_scores(feedback: Feedback, level: int, policy: ScoringPolicy = STRICT_POLICY) -> ScoreResult:
	"""Score a decoded feedback object and write the results back onto it."""
	analysis = feedback.linguistic_analysis
	result = score_submission(
		level,
		content_score=feedback.content_score,
		focus_area_scores=feedback.focus_area_scores,
		grammar_score=_analysis_score(analysis.grammar),
		sentence_score=_analysis_score(analysis.sentence_formation),
		vocabulary_score=_analysis_score(analysis.vocabulary),
		policy=policy,
	)
	feedback.content_score = result.content_score
	feedback.linguistic_score = result.linguistic_score
	feedback.overall_score = result.overall_score
	feedback.passed = result.passed
	tier, message = performance_tier(result.overall_score, result.pass_threshold)
	feedback.performance_tier = tier
	feedback.tier_message = message
	return result


# ============================================================================
# SUPPLEMENTARY FEEDBACK
# ============================================================================

# Per tier: filler penalty per word, expected word count
_DELIVERY_EXPECTATIONS: Tuple[Tuple[int, int], ...] = ((3, 40), (5, 60), (7, 80))


def delivery_score(metrics: TranscriptMetrics, level: int) -> int:
	"""Pace, filler and length based delivery score. Informational only."""
	filler_penalty, expected_words = _DELIVERY_EXPECTATIONS[level_tier(level)]
	wpm = metrics.words_per_minute or 0
	score = 100
	if wpm < 80:
		score -= 20
	elif wpm < 100:
		score -= 10
	elif wpm > 180:
		score -= 20
	elif wpm > 160:
		score -= 10
	score -= (metrics.filler_words or 0) * filler_penalty
	if metrics.word_count < expected_words * 0.6:
		score -= 20
	elif metrics.word_count < expected_words * 0.8:
		score -= 10
	return max(MIN_SCORE, min(MAX_SCORE, score))


def performance_tier(score: int, threshold: int) -> Tuple[str, str]:
	if score >= threshold + 15:
		return "EXCELLENT", "Outstanding work! You've mastered this lesson!"
	if score >= threshold + 5:
		return "GOOD", "Great job! You're performing above expectations!"
	if score >= threshold:
		return "PASSED", "Well done! You've successfully completed this lesson!"
	if score >= threshold - 5:
		return "NEARLY_THERE", "You're very close! Just a bit more practice!"
	return "NEEDS_PRACTICE", "Keep practicing! You're on the right path!"


def describe_improvement(previous_score: int, score: int) -> Tuple[int, str]:
	delta = score - previous_score
	if delta > 0:
		return delta, f"You improved by {delta} points since your last attempt!"
	if delta == 0:
		return delta, "You maintained your score. Try focusing on the improvement suggestions!"
	return delta, "Keep practicing! Review the feedback to improve next time."


def adaptive_suggestion(attempts_count: int, score: int) -> Optional[str]:
	if attempts_count >= 3 and score >= 90:
		return "You're excelling at this level! Consider moving to more challenging lessons."
	if attempts_count >= 5 and score < 50:
		return "This level seems challenging. Consider reviewing earlier lessons or asking for help."
	return None
