"""
Speaking Feedback
=================

Accepts a recorded attempt at a lesson and returns scored feedback.

Flow for POST /feedback:
1. transcribe the recording and ask the AI for an improved example answer
   (text and synthesized audio; both optional extras);
2. ask the AI to judge the transcript and decode its JSON into Feedback;
3. score it locally (weights and thresholds live in academy.scoring, never in
   the model's hands);
4. store the session. This is the one write that must succeed: on failure
   the student gets an error and can resubmit;
5. update lesson progress and run gamification, both best-effort.
"""

from __future__ import annotations

import base64
import json
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import store
from ..ai_client import SpeechAIClient
from ..clock import Clock, get_clock
from ..db import get_db
from ..errors import AIServiceUnavailable, PersistenceUnavailable
from ..gamification import GamificationOutcome, process_session
from ..models import Lesson
from ..quests import SessionEvent
from ..scoring import (
	Feedback,
	ScoringPolicy,
	adaptive_suggestion,
	apply_scores,
	content_weight,
	decode_feedback,
	delivery_score,
	describe_improvement,
	level_tier,
	linguistic_weight,
)
from ..transcript import compute_metrics, dedupe_transcript
from .auth import User, get_current_user


router = APIRouter(prefix="/feedback", tags=["feedback"])

logger = logging.getLogger(__name__)

DEFAULT_FOCUS_AREAS = ["Clarity", "Confidence", "Delivery"]

# ============================================================================
# PROMPTS
# ============================================================================

_LEVEL_EXPECTATIONS: List[Dict[str, str]] = [
	{
		"grammar": "basic sentence structure, simple tenses",
		"vocabulary": "everyday conversational words",
		"sentences": "simple and compound sentences",
		"delivery": "clear pace, minimal filler words",
	},
	{
		"grammar": "consistent tenses, proper conjunctions",
		"vocabulary": "expanded vocabulary with variety",
		"sentences": "mix of compound and complex sentences",
		"delivery": "confident pace, controlled filler words",
	},
	{
		"grammar": "advanced grammar, nuanced expressions",
		"vocabulary": "sophisticated word choices, minimal repetition",
		"sentences": "complex sentences with smooth transitions",
		"delivery": "natural flow, professional pace, no fillers",
	},
]

JUDGE_SYSTEM = "You are an expert speaking coach. Respond ONLY with valid JSON."
EXAMPLE_SYSTEM = "You improve student responses while keeping their core message. Sound natural and authentic."


def level_expectations(level: int) -> Dict[str, str]:
	return _LEVEL_EXPECTATIONS[level_tier(level)]


def focus_areas_for(lesson: Lesson) -> List[str]:
	areas = [str(a).strip() for a in (lesson.feedback_focus_areas or []) if str(a).strip()]
	return areas or list(DEFAULT_FOCUS_AREAS)


def build_example_prompt(lesson: Lesson, transcript: str) -> str:
	level = lesson.level_number
	areas = ", ".join(focus_areas_for(lesson))
	return (
		f"You are a speaking coach helping a Level {level} student improve.\n\n"
		f"Task: {lesson.practice_prompt}\n"
		f"Student's response: \"{transcript}\"\n"
		f"Focus areas: {areas}\n"
		f"Level {level} expectations: {json.dumps(level_expectations(level))}\n\n"
		"Create an IMPROVED version of their response that keeps their core ideas, fixes grammar and clarity, "
		f"improves pacing and flow, demonstrates {areas}, uses vocabulary suitable for Level {level}, "
		"sounds natural and stays a similar length.\n\n"
		"Respond with ONLY the improved speech text."
	)


def build_judge_prompt(lesson: Lesson, transcript: str) -> str:
	level = lesson.level_number
	areas = focus_areas_for(lesson)
	area_scores = ", ".join(f'"{area}": <0-100>' for area in areas)
	return (
		f"Analyze this Level {level} speaking practice.\n\n"
		f"Lesson: {lesson.level_title}\n"
		f"Task: {lesson.practice_prompt}\n"
		f"Focus areas: {', '.join(areas)}\n"
		f"Student response: \"{transcript}\"\n"
		f"Level expectations: {json.dumps(level_expectations(level))}\n\n"
		f"Weighting: content and delivery {int(content_weight(level) * 100)}%, "
		f"linguistic quality {int(linguistic_weight(level) * 100)}%.\n\n"
		"Score every field from 0 to 100. Return ONLY a JSON object with keys:\n"
		"content_score (integer), strengths (3 strings), improvements (3 strings), detailed_feedback (string),\n"
		f"focus_area_scores ({{{area_scores}}}),\n"
		"linguistic_analysis ({grammar: {score, suggestions}, sentence_formation: {score, complexity_level, suggestions}, "
		"vocabulary: {score, advanced_words_used, suggestions}, delivery: {score, pace_quality, filler_word_frequency, suggestions}}),\n"
		"transcript_metrics ({word_count, words_per_minute, filler_words, pace_feedback}).\n\n"
		f"Be encouraging but honest.{' Focus more on content and confidence for this beginner.' if level_tier(level) == 0 else ''}"
	)


# ============================================================================
# DEPENDENCIES AND MODELS
# ============================================================================

async def get_ai_client() -> AsyncIterator[SpeechAIClient]:
	try:
		client = SpeechAIClient()
	except ValueError as err:
		raise HTTPException(status_code=503, detail=str(err))
	try:
		yield client
	finally:
		await client.aclose()


class FeedbackResponse(BaseModel):
	success: bool = True
	session_id: str
	score: int
	passed: bool
	transcript: str
	ai_example_text: Optional[str] = None
	feedback: Dict[str, Any]
	gamification: Dict[str, Any]


async def _example_answer(client: SpeechAIClient, lesson: Lesson, transcript: str) -> tuple[Optional[str], Optional[str]]:
	"""Improved example text and its audio (base64). Either may be missing."""
	try:
		text = await client.complete(
			[{"role": "system", "content": EXAMPLE_SYSTEM}, {"role": "user", "content": build_example_prompt(lesson, transcript)}],
			max_tokens=250,
		)
	except AIServiceUnavailable as err:
		logger.warning("Example answer unavailable: %s", err)
		return None, None
	text = text.strip() or None
	if text is None:
		return None, None
	try:
		audio = await client.synthesize(text)
	except AIServiceUnavailable as err:
		logger.warning("Example audio unavailable: %s", err)
		return text, None
	return text, base64.b64encode(audio).decode("ascii")


# ============================================================================
# ENDPOINT
# ============================================================================

@router.post("", response_model=FeedbackResponse)
async def submit_feedback(
	audio: UploadFile = File(...),
	category: str = Form(...),
	module_number: int = Form(...),
	level_number: int = Form(..., ge=1),
	duration_seconds: Optional[float] = Form(default=None),
	used_hint: bool = Form(default=False),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	client: SpeechAIClient = Depends(get_ai_client),
	clock: Clock = Depends(get_clock),
):
	lesson = store.get_lesson(db, category, module_number, level_number)
	recording = await audio.read()
	if not recording:
		raise HTTPException(status_code=400, detail="audio is empty")
	previous_score = store.previous_attempt_score(db, user.username, category, module_number, level_number)

	transcript = dedupe_transcript(await client.transcribe(
		recording,
		filename=audio.filename or "recording.webm",
		content_type=audio.content_type or "audio/webm",
	))
	example_text, example_audio = await _example_answer(client, lesson, transcript)

	feedback: Feedback = decode_feedback(await client.judge(JUDGE_SYSTEM, build_judge_prompt(lesson, transcript)))
	if feedback.transcript_metrics is None:
		feedback.transcript_metrics = compute_metrics(transcript, duration_seconds)
	result = apply_scores(feedback, level_number, ScoringPolicy.from_settings())
	feedback.delivery_score = delivery_score(feedback.transcript_metrics, level_number)
	if previous_score is not None:
		feedback.previous_score = previous_score
		feedback.improvement, feedback.improvement_message = describe_improvement(previous_score, result.overall_score)

	now = clock.now()
	session_id = f"session_{uuid.uuid4().hex}"
	store.record_session(
		db,
		session_id=session_id,
		user_id=user.username,
		category=category,
		module_number=module_number,
		level_number=level_number,
		transcript=transcript,
		feedback=feedback.model_dump(),
		overall_score=result.overall_score,
		passed=result.passed,
		created_at=now,
		example_text=example_text,
		example_audio=example_audio,
		used_hint=used_hint,
	)
	logger.info("Stored session %s for %s: score %d, passed=%s", session_id, user.username, result.overall_score, result.passed)

	try:
		progress = store.upsert_progress(
			db, user.username, category, module_number, level_number,
			score=result.overall_score, passed=result.passed, attempted_at=now,
		)
		feedback.adaptive_suggestion = adaptive_suggestion(progress.attempts_count, result.overall_score)
	except PersistenceUnavailable as err:
		logger.warning("Progress update skipped for session %s: %s", session_id, err)

	event = SessionEvent(
		user_id=user.username,
		session_id=session_id,
		score=result.overall_score,
		category=category,
		module_number=module_number,
		level_number=level_number,
		timestamp=now,
		passed=result.passed,
		used_hint=used_hint,
	)
	try:
		outcome = process_session(db, event, now.date())
	except Exception:
		# The session is already saved; rewards must not turn it into an error
		logger.exception("Gamification failed for session %s", session_id)
		outcome = GamificationOutcome()

	return FeedbackResponse(
		session_id=session_id,
		score=result.overall_score,
		passed=result.passed,
		transcript=transcript,
		ai_example_text=example_text,
		feedback=feedback.model_dump(),
		gamification=outcome.as_dict(),
	)
