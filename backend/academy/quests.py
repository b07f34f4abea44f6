"""
Daily Quests
============

Three quests per student per calendar day, picked from a static template
catalog according to how far along the student is:

1. a practice quest whose difficulty follows the number of completed lessons;
2. a performance quest sized by average score once five lessons are done,
   otherwise the beginner exploration quest;
3. a streak quest when there is no active streak, else a challenge quest when
   some category is weak, else a coin flip between a random timing quest and a
   random mastery quest.

Generation is idempotent per (student, date): the first call persists the
three rows, later calls return them. Completion matching runs after every
recorded session and never raises; quest bookkeeping failures are logged and
the session flow carries on.
"""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from functools import cached_property
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from . import store
from .errors import PersistenceUnavailable
from .models import DailyQuest
from .progression import calculate_streak
from .scoring import pass_threshold


logger = logging.getLogger(__name__)


class QuestType(str, Enum):
	PRACTICE = "practice"
	PERFORMANCE = "performance"
	STREAK = "streak"
	CHALLENGE = "challenge"
	EXPLORATION = "exploration"
	TIMING = "timing"
	MASTERY = "mastery"


class Difficulty(str, Enum):
	EASY = "easy"
	MEDIUM = "medium"
	HARD = "hard"


@dataclass(frozen=True)
class QuestTemplate:
	quest_type: QuestType
	description: str
	target: Mapping[str, Any]
	xp_reward: int
	difficulty: Difficulty


def _template(quest_type: QuestType, description: str, target: Dict[str, Any], xp_reward: int, difficulty: Difficulty) -> QuestTemplate:
	return QuestTemplate(quest_type, description, MappingProxyType(target), xp_reward, difficulty)


_P, _F, _S, _C, _E, _T, _M = (
	QuestType.PRACTICE, QuestType.PERFORMANCE, QuestType.STREAK, QuestType.CHALLENGE,
	QuestType.EXPLORATION, QuestType.TIMING, QuestType.MASTERY,
)
_EASY, _MEDIUM, _HARD = Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD

QUEST_TEMPLATES: Mapping[QuestType, Tuple[QuestTemplate, ...]] = MappingProxyType({
	_P: (
		_template(_P, "Complete 2 lessons in any category", {"count": 2}, 20, _EASY),
		_template(_P, "Complete 3 lessons today", {"count": 3}, 30, _MEDIUM),
		_template(_P, "Complete 5 lessons in one day", {"count": 5}, 50, _HARD),
	),
	_F: (
		_template(_F, "Score 85+ on any lesson", {"score": 85}, 30, _MEDIUM),
		_template(_F, "Score 90+ on any lesson", {"score": 90}, 40, _MEDIUM),
		_template(_F, "Get a perfect score (100)", {"score": 100}, 50, _HARD),
	),
	_S: (
		_template(_S, "Maintain your daily streak", {"maintain": True}, 15, _EASY),
		_template(_S, "Practice 2 days in a row", {"streak": 2}, 25, _EASY),
	),
	_C: (
		_template(_C, "Beat your best score in any module", {"beatBest": True}, 40, _MEDIUM),
		_template(_C, "Complete a lesson you struggled with before", {"retry": True}, 35, _MEDIUM),
	),
	_E: (
		_template(_E, "Try a lesson from a new category", {"newCategory": True}, 25, _EASY),
		_template(_E, "Practice in 2 different categories today", {"categoriesCount": 2}, 30, _MEDIUM),
		_template(_E, "Practice in 3 different categories", {"categoriesCount": 3}, 45, _HARD),
	),
	_T: (
		_template(_T, "Practice before 10 AM (Early Bird)", {"before": "10:00"}, 35, _MEDIUM),
		_template(_T, "Practice in the evening (after 6 PM)", {"after": "18:00"}, 30, _EASY),
		_template(_T, "Practice late night (after 10 PM)", {"after": "22:00"}, 40, _MEDIUM),
	),
	_M: (
		_template(_M, "Complete 3 lessons without hints", {"noHints": True, "count": 3}, 50, _HARD),
		_template(_M, "Score 80+ on 2 consecutive lessons", {"consecutive": 2, "score": 80}, 45, _HARD),
		_template(_M, "Score 90+ on 3 consecutive lessons", {"consecutive": 3, "score": 90}, 60, _HARD),
	),
})

BEGINNER_EXPLORATION = QUEST_TEMPLATES[QuestType.EXPLORATION][0]
STREAK_BUILDER = QUEST_TEMPLATES[QuestType.STREAK][0]
WEAK_AREA_CHALLENGE = QUEST_TEMPLATES[QuestType.CHALLENGE][0]


# ============================================================================
# GENERATION
# ============================================================================

@dataclass(frozen=True)
class QuestSignals:
	total_lessons: int = 0
	average_score: int = 0
	current_streak: int = 0
	weak_categories: Tuple[str, ...] = ()


def difficulty_for(metric: float) -> Difficulty:
	if metric < 10:
		return Difficulty.EASY
	if metric < 50:
		return Difficulty.MEDIUM
	return Difficulty.HARD


def select_by_difficulty(templates: Sequence[QuestTemplate], metric: float) -> QuestTemplate:
	wanted = difficulty_for(metric)
	for template in templates:
		if template.difficulty == wanted:
			return template
	# No template of that tier: hard falls back to the last one, others to the first
	return templates[-1] if wanted == Difficulty.HARD else templates[0]


def generate_daily_quests(signals: QuestSignals, rng: random.Random) -> List[QuestTemplate]:
	quests = [select_by_difficulty(QUEST_TEMPLATES[QuestType.PRACTICE], signals.total_lessons)]

	if signals.total_lessons >= 5:
		quests.append(select_by_difficulty(QUEST_TEMPLATES[QuestType.PERFORMANCE], signals.average_score))
	else:
		quests.append(BEGINNER_EXPLORATION)

	if signals.current_streak == 0:
		quests.append(STREAK_BUILDER)
	elif signals.weak_categories:
		quests.append(WEAK_AREA_CHALLENGE)
	elif rng.random() < 0.5:
		quests.append(rng.choice(QUEST_TEMPLATES[QuestType.TIMING]))
	else:
		quests.append(rng.choice(QUEST_TEMPLATES[QuestType.MASTERY]))
	return quests


def load_signals(db: Session, user_id: str, today: date, weak_threshold: int) -> QuestSignals:
	return QuestSignals(
		total_lessons=store.completed_lesson_count(db, user_id),
		average_score=store.average_session_score(db, user_id),
		current_streak=calculate_streak(store.practice_days(db, user_id), today),
		weak_categories=tuple(store.weak_categories(db, user_id, weak_threshold)),
	)


def ensure_daily_quests(
	db: Session,
	user_id: str,
	quest_date: date,
	signals: QuestSignals,
	rng: Optional[random.Random] = None,
) -> List[DailyQuest]:
	"""Today's three quests for the student, generating them on first call."""
	existing = store.get_quests(db, user_id, quest_date)
	if existing:
		return existing

	templates = generate_daily_quests(signals, rng or random.Random())
	rows = [
		DailyQuest(
			id=uuid.uuid4().hex,
			user_id=user_id,
			quest_date=quest_date,
			slot=slot,
			quest_type=template.quest_type.value,
			description=template.description,
			target=dict(template.target),
			difficulty=template.difficulty.value,
			xp_reward=template.xp_reward,
			completed=False,
		)
		for slot, template in enumerate(templates, start=1)
	]
	if store.insert_quests(db, rows):
		logger.info("Generated %d daily quests for %s on %s", len(rows), user_id, quest_date)
	else:
		logger.info("Daily quests for %s on %s were generated concurrently", user_id, quest_date)
	return store.get_quests(db, user_id, quest_date)


# ============================================================================
# COMPLETION MATCHING
# ============================================================================

@dataclass(frozen=True)
class SessionEvent:
	user_id: str
	session_id: str
	score: int
	category: str
	module_number: int
	level_number: int
	timestamp: datetime
	passed: bool = False
	used_hint: bool = False


@dataclass(frozen=True)
class CompletedQuest:
	quest_id: str
	quest_type: str
	description: str
	xp_reward: int


@dataclass(frozen=True)
class QuestCompletion:
	completed: Tuple[CompletedQuest, ...] = field(default_factory=tuple)

	@property
	def quest_ids(self) -> List[str]:
		return [quest.quest_id for quest in self.completed]

	@property
	def xp(self) -> int:
		return sum(quest.xp_reward for quest in self.completed)


def parse_hour(value: str) -> int:
	"""Hour of an "HH:MM" string."""
	hour = int(str(value).split(":")[0])
	if not 0 <= hour <= 23:
		raise ValueError(f"hour out of range: {value!r}")
	return hour


class _SessionAggregates:
	"""Cross-session facts a quest may need, queried at most once each."""

	def __init__(self, db: Session, event: SessionEvent) -> None:
		self.db = db
		self.event = event

	@cached_property
	def sessions_today(self):
		return store.sessions_on(self.db, self.event.user_id, self.event.timestamp.date())

	@cached_property
	def current_streak(self) -> int:
		return calculate_streak(store.practice_days(self.db, self.event.user_id), self.event.timestamp.date())

	@cached_property
	def earlier_lesson_scores(self) -> List[int]:
		e = self.event
		return store.lesson_attempt_scores(self.db, e.user_id, e.category, e.module_number, e.level_number, e.timestamp)

	@cached_property
	def category_is_new(self) -> bool:
		e = self.event
		return not store.category_practiced_before(self.db, e.user_id, e.category, e.timestamp)

	def recent_scores(self, count: int) -> List[int]:
		return store.recent_scores(self.db, self.event.user_id, count)


def _matches(quest_type: str, target: Mapping[str, Any], event: SessionEvent, facts: _SessionAggregates) -> bool:
	if quest_type == QuestType.PERFORMANCE.value:
		return "score" in target and event.score >= target["score"]

	if quest_type == QuestType.TIMING.value:
		hour = event.timestamp.hour
		if target.get("before") and hour < parse_hour(target["before"]):
			return True
		if target.get("after") and hour >= parse_hour(target["after"]):
			return True
		return False

	if quest_type == QuestType.PRACTICE.value:
		return len(facts.sessions_today) >= int(target.get("count", 1))

	if quest_type == QuestType.STREAK.value:
		if "streak" in target:
			return facts.current_streak >= int(target["streak"])
		return bool(target.get("maintain")) and facts.current_streak >= 1

	if quest_type == QuestType.CHALLENGE.value:
		earlier = facts.earlier_lesson_scores
		if not earlier:
			return False
		if target.get("beatBest"):
			return event.score > max(earlier)
		if target.get("retry"):
			return max(earlier) < pass_threshold(event.level_number) and event.passed
		return False

	if quest_type == QuestType.EXPLORATION.value:
		if target.get("newCategory"):
			return facts.category_is_new
		if "categoriesCount" in target:
			categories = {session.category for session in facts.sessions_today}
			return len(categories) >= int(target["categoriesCount"])
		return False

	if quest_type == QuestType.MASTERY.value:
		if "consecutive" in target:
			needed = int(target["consecutive"])
			scores = facts.recent_scores(needed)
			return len(scores) == needed and all(score >= target.get("score", 0) for score in scores)
		if target.get("noHints"):
			unaided = [session for session in facts.sessions_today if not session.used_hint]
			return len(unaided) >= int(target.get("count", 1))
		return False

	return False


def check_quest_completion(db: Session, event: SessionEvent, quest_date: Optional[date] = None) -> QuestCompletion:
	"""Complete every open quest of the day that the recorded session satisfies."""
	quest_date = quest_date or event.timestamp.date()
	try:
		quests = store.get_quests(db, event.user_id, quest_date)
	except PersistenceUnavailable:
		logger.warning("Quest store unavailable, skipping quest matching for session %s", event.session_id)
		return QuestCompletion()

	# Snapshot the open quests; every complete_quest commit expires loaded rows
	open_quests = [
		(CompletedQuest(quest.id, quest.quest_type, quest.description, quest.xp_reward), dict(quest.target or {}))
		for quest in quests
		if not quest.completed
	]
	facts = _SessionAggregates(db, event)
	completed: List[CompletedQuest] = []
	for candidate, target in open_quests:
		try:
			if not _matches(candidate.quest_type, target, event, facts):
				continue
			if store.complete_quest(db, candidate.quest_id, event.timestamp):
				logger.info("Quest %s (%s) completed by session %s", candidate.quest_id, candidate.quest_type, event.session_id)
				completed.append(candidate)
		except PersistenceUnavailable:
			logger.warning("Could not evaluate quest %s for session %s", candidate.quest_id, event.session_id)
		except ValueError as err:
			logger.warning("Quest %s has an unusable target %r: %s", candidate.quest_id, target, err)
	return QuestCompletion(tuple(completed))
