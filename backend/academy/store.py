"""
Progression store
=================

Every read and write the scoring/progression code needs, expressed against the
SQLAlchemy session. Writes that must never regress state are single
conditional statements rather than read-modify-write:

- best_score only grows and completed only flips to true (CASE update);
- total_xp is incremented in the database, not in Python;
- quests and achievements rely on unique constraints, a losing racer rolls
  back and reads the winner's rows.

Any SQLAlchemy failure is rolled back and re-raised as PersistenceUnavailable.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import LessonNotFound, PersistenceUnavailable
from .models import (
	DailyQuest,
	Lesson,
	PracticeSession,
	UserAchievement,
	UserArtifact,
	UserGamification,
	UserProgress,
)
from .progression import LevelChange, level_change, level_for_xp, rank_for_level
from .scoring import round_half_up


logger = logging.getLogger(__name__)


@contextmanager
def _guard(db: Session, operation: str) -> Iterator[None]:
	try:
		yield
	except SQLAlchemyError as err:
		db.rollback()
		logger.warning("Store operation %s failed: %s", operation, err)
		raise PersistenceUnavailable(operation, type(err).__name__) from err


def naive(moment: datetime) -> datetime:
	"""Drop tzinfo; timestamps are stored as school-local wall time."""
	return moment.replace(tzinfo=None) if moment.tzinfo is not None else moment


def _day_bounds(day: date) -> Tuple[datetime, datetime]:
	start = datetime.combine(day, time.min)
	return start, start + timedelta(days=1)


# ============================================================================
# LESSONS AND SESSIONS
# ============================================================================

def get_lesson(db: Session, category: str, module_number: int, level_number: int) -> Lesson:
	with _guard(db, "get_lesson"):
		lesson = db.execute(
			select(Lesson).where(
				Lesson.category == category,
				Lesson.module_number == module_number,
				Lesson.level_number == level_number,
			)
		).scalar_one_or_none()
	if lesson is None:
		raise LessonNotFound(category, module_number, level_number)
	return lesson


def previous_attempt_score(db: Session, user_id: str, category: str, module_number: int, level_number: int) -> Optional[int]:
	with _guard(db, "previous_attempt_score"):
		return db.execute(
			select(PracticeSession.overall_score)
			.where(
				PracticeSession.user_id == user_id,
				PracticeSession.category == category,
				PracticeSession.module_number == module_number,
				PracticeSession.level_number == level_number,
			)
			.order_by(PracticeSession.created_at.desc())
			.limit(1)
		).scalar_one_or_none()


def record_session(
	db: Session,
	*,
	session_id: str,
	user_id: str,
	category: str,
	module_number: int,
	level_number: int,
	transcript: str,
	feedback: Dict[str, Any],
	overall_score: Optional[int],
	passed: bool,
	created_at: datetime,
	example_text: Optional[str] = None,
	example_audio: Optional[str] = None,
	used_hint: bool = False,
) -> PracticeSession:
	"""Persist one practice attempt. Failure here must reach the student."""
	row = PracticeSession(
		id=session_id,
		user_id=user_id,
		category=category,
		module_number=module_number,
		level_number=level_number,
		user_transcript=transcript,
		ai_example_text=example_text,
		ai_example_audio=example_audio,
		feedback=feedback,
		overall_score=overall_score,
		passed=passed,
		used_hint=used_hint,
		status="completed",
		created_at=naive(created_at),
		completed_at=naive(created_at),
	)
	with _guard(db, "record_session"):
		db.add(row)
		db.commit()
	return row


# ============================================================================
# LESSON PROGRESS
# ============================================================================

@dataclass(frozen=True)
class ProgressUpdate:
	best_score: int
	completed: bool
	attempts_count: int
	is_new_best: bool


def _apply_progress(db: Session, key: Sequence[Any], score: int, passed: bool, attempted_at: datetime) -> int:
	values: Dict[str, Any] = {
		"best_score": case((UserProgress.best_score < score, score), else_=UserProgress.best_score),
		"attempts_count": UserProgress.attempts_count + 1,
		"last_attempted_at": attempted_at,
	}
	if passed:
		values["completed"] = True
	result = db.execute(update(UserProgress).where(*key).values(**values))
	return result.rowcount or 0


def upsert_progress(
	db: Session,
	user_id: str,
	category: str,
	module_number: int,
	level_number: int,
	*,
	score: int,
	passed: bool,
	attempted_at: datetime,
) -> ProgressUpdate:
	key = (
		UserProgress.user_id == user_id,
		UserProgress.category == category,
		UserProgress.module_number == module_number,
		UserProgress.level_number == level_number,
	)
	attempted_at = naive(attempted_at)
	with _guard(db, "upsert_progress"):
		previous_best = db.execute(select(UserProgress.best_score).where(*key)).scalar_one_or_none()
		if not _apply_progress(db, key, score, passed, attempted_at):
			try:
				db.add(UserProgress(
					user_id=user_id,
					category=category,
					module_number=module_number,
					level_number=level_number,
					completed=passed,
					best_score=score,
					attempts_count=1,
					last_attempted_at=attempted_at,
				))
				db.commit()
			except IntegrityError:
				# Another submission created the row first
				db.rollback()
				_apply_progress(db, key, score, passed, attempted_at)
				db.commit()
		else:
			db.commit()
		row = db.execute(
			select(UserProgress).where(*key).execution_options(populate_existing=True)
		).scalar_one()
	return ProgressUpdate(
		best_score=row.best_score,
		completed=row.completed,
		attempts_count=row.attempts_count,
		is_new_best=previous_best is None or score > previous_best,
	)


# ============================================================================
# XP AND LEVEL
# ============================================================================

def read_gamification(db: Session, user_id: str) -> Optional[UserGamification]:
	with _guard(db, "read_gamification"):
		return db.execute(
			select(UserGamification).where(UserGamification.user_id == user_id).execution_options(populate_existing=True)
		).scalar_one_or_none()


def _increment_xp(db: Session, user_id: str, amount: int) -> int:
	result = db.execute(
		update(UserGamification)
		.where(UserGamification.user_id == user_id)
		.values(total_xp=UserGamification.total_xp + amount)
	)
	return result.rowcount or 0


def award_xp(db: Session, user_id: str, amount: int) -> LevelChange:
	"""Add XP in the database and store the level/rank derived from the new total."""
	if amount < 0:
		raise ValueError(f"XP award cannot be negative: {amount}")
	with _guard(db, "award_xp"):
		if not _increment_xp(db, user_id, amount):
			try:
				db.add(UserGamification(
					user_id=user_id,
					total_xp=amount,
					level=level_for_xp(amount),
					rank_title=rank_for_level(level_for_xp(amount)).title,
				))
				db.flush()
			except IntegrityError:
				db.rollback()
				_increment_xp(db, user_id, amount)
		row = db.execute(
			select(UserGamification).where(UserGamification.user_id == user_id).execution_options(populate_existing=True)
		).scalar_one()
		change = level_change(row.total_xp - amount, row.total_xp)
		row.level = change.new_level
		row.rank_title = change.new_rank.title
		db.commit()
	return change


def update_longest_streak(db: Session, user_id: str, streak: int) -> None:
	with _guard(db, "update_longest_streak"):
		db.execute(
			update(UserGamification)
			.where(UserGamification.user_id == user_id, UserGamification.longest_streak < streak)
			.values(longest_streak=streak)
		)
		db.commit()


# ============================================================================
# DAILY QUESTS
# ============================================================================

def get_quests(db: Session, user_id: str, quest_date: date) -> List[DailyQuest]:
	with _guard(db, "get_quests"):
		return list(db.execute(
			select(DailyQuest)
			.where(DailyQuest.user_id == user_id, DailyQuest.quest_date == quest_date)
			.order_by(DailyQuest.slot)
			.execution_options(populate_existing=True)
		).scalars())


def insert_quests(db: Session, quests: Sequence[DailyQuest]) -> bool:
	"""Insert a day's quests in one transaction. False when another request won."""
	with _guard(db, "insert_quests"):
		try:
			db.add_all(list(quests))
			db.commit()
		except IntegrityError:
			db.rollback()
			return False
	return True


def complete_quest(db: Session, quest_id: str, completed_at: datetime) -> bool:
	"""Flip a quest to completed. True only for the caller that did the flip."""
	with _guard(db, "complete_quest"):
		result = db.execute(
			update(DailyQuest)
			.where(DailyQuest.id == quest_id, DailyQuest.completed.is_(False))
			.values(completed=True, completed_at=naive(completed_at))
		)
		db.commit()
	return bool(result.rowcount)


# ============================================================================
# ACHIEVEMENTS AND ARTIFACTS
# ============================================================================

def achievement_keys(db: Session, user_id: str) -> List[str]:
	with _guard(db, "achievement_keys"):
		return list(db.execute(
			select(UserAchievement.achievement_key).where(UserAchievement.user_id == user_id)
		).scalars())


def list_achievements(db: Session, user_id: str) -> List[UserAchievement]:
	with _guard(db, "list_achievements"):
		return list(db.execute(
			select(UserAchievement).where(UserAchievement.user_id == user_id).order_by(UserAchievement.unlocked_at)
		).scalars())


def insert_achievement(db: Session, user_id: str, key: str, tier: str, unlocked_at: datetime) -> bool:
	"""True when the unlock record was created, False when it already existed."""
	with _guard(db, "insert_achievement"):
		existing = db.execute(
			select(UserAchievement.id).where(UserAchievement.user_id == user_id, UserAchievement.achievement_key == key)
		).first()
		if existing is not None:
			return False
		try:
			db.add(UserAchievement(user_id=user_id, achievement_key=key, achievement_tier=tier, unlocked_at=naive(unlocked_at)))
			db.commit()
		except IntegrityError:
			db.rollback()
			return False
	return True


def list_artifacts(db: Session, user_id: str) -> List[UserArtifact]:
	with _guard(db, "list_artifacts"):
		return list(db.execute(
			select(UserArtifact).where(UserArtifact.user_id == user_id).order_by(UserArtifact.earned_at)
		).scalars())


def insert_artifact(db: Session, user_id: str, artifact_type: str, name: str, rarity: str, earned_at: datetime) -> bool:
	with _guard(db, "insert_artifact"):
		existing = db.execute(
			select(UserArtifact.id).where(UserArtifact.user_id == user_id, UserArtifact.artifact_name == name)
		).first()
		if existing is not None:
			return False
		try:
			db.add(UserArtifact(
				user_id=user_id,
				artifact_type=artifact_type,
				artifact_name=name,
				artifact_rarity=rarity,
				equipped=False,
				earned_at=naive(earned_at),
			))
			db.commit()
		except IntegrityError:
			db.rollback()
			return False
	return True


def equip_artifact(db: Session, user_id: str, name: str) -> bool:
	"""Equip an owned artifact, un-equipping others of its type in the same commit."""
	with _guard(db, "equip_artifact"):
		owned = db.execute(
			select(UserArtifact).where(UserArtifact.user_id == user_id, UserArtifact.artifact_name == name)
		).scalar_one_or_none()
		if owned is None:
			return False
		db.execute(
			update(UserArtifact)
			.where(UserArtifact.user_id == user_id, UserArtifact.artifact_type == owned.artifact_type)
			.values(equipped=case((UserArtifact.artifact_name == name, True), else_=False))
		)
		db.commit()
	return True


# ============================================================================
# AGGREGATES
# ============================================================================

def completed_lesson_count(db: Session, user_id: str) -> int:
	with _guard(db, "completed_lesson_count"):
		return db.execute(
			select(func.count()).select_from(UserProgress).where(UserProgress.user_id == user_id, UserProgress.completed.is_(True))
		).scalar_one()


def category_completion_counts(db: Session, user_id: str) -> Dict[str, int]:
	with _guard(db, "category_completion_counts"):
		rows = db.execute(
			select(UserProgress.category, func.count())
			.where(UserProgress.user_id == user_id, UserProgress.completed.is_(True))
			.group_by(UserProgress.category)
		).all()
	return {category: count for category, count in rows}


def perfect_score_count(db: Session, user_id: str) -> int:
	with _guard(db, "perfect_score_count"):
		return db.execute(
			select(func.count()).select_from(PracticeSession).where(
				PracticeSession.user_id == user_id, PracticeSession.overall_score == 100
			)
		).scalar_one()


def practice_days(db: Session, user_id: str) -> List[date]:
	with _guard(db, "practice_days"):
		stamps = db.execute(select(PracticeSession.created_at).where(PracticeSession.user_id == user_id)).scalars()
		return sorted({stamp.date() for stamp in stamps})


def average_session_score(db: Session, user_id: str) -> int:
	with _guard(db, "average_session_score"):
		average = db.execute(
			select(func.avg(PracticeSession.overall_score)).where(
				PracticeSession.user_id == user_id, PracticeSession.overall_score.is_not(None)
			)
		).scalar_one()
	return round_half_up(average) if average is not None else 0


def weak_categories(db: Session, user_id: str, threshold: int) -> List[str]:
	with _guard(db, "weak_categories"):
		rows = db.execute(
			select(UserProgress.category)
			.where(UserProgress.user_id == user_id)
			.group_by(UserProgress.category)
			.having(func.avg(UserProgress.best_score) < threshold)
			.order_by(UserProgress.category)
		).scalars()
		return list(rows)


def sessions_on(db: Session, user_id: str, day: date) -> List[PracticeSession]:
	start, end = _day_bounds(day)
	with _guard(db, "sessions_on"):
		return list(db.execute(
			select(PracticeSession)
			.where(PracticeSession.user_id == user_id, PracticeSession.created_at >= start, PracticeSession.created_at < end)
			.order_by(PracticeSession.created_at)
		).scalars())


def recent_scores(db: Session, user_id: str, limit: int) -> List[int]:
	"""Newest first."""
	with _guard(db, "recent_scores"):
		return list(db.execute(
			select(PracticeSession.overall_score)
			.where(PracticeSession.user_id == user_id, PracticeSession.overall_score.is_not(None))
			.order_by(PracticeSession.created_at.desc())
			.limit(limit)
		).scalars())


def category_practiced_before(db: Session, user_id: str, category: str, before: datetime) -> bool:
	with _guard(db, "category_practiced_before"):
		found = db.execute(
			select(PracticeSession.id).where(
				PracticeSession.user_id == user_id,
				PracticeSession.category == category,
				PracticeSession.created_at < naive(before),
			).limit(1)
		).first()
	return found is not None


def lesson_attempt_scores(db: Session, user_id: str, category: str, module_number: int, level_number: int, before: datetime) -> List[int]:
	with _guard(db, "lesson_attempt_scores"):
		return list(db.execute(
			select(PracticeSession.overall_score).where(
				PracticeSession.user_id == user_id,
				PracticeSession.category == category,
				PracticeSession.module_number == module_number,
				PracticeSession.level_number == level_number,
				PracticeSession.created_at < naive(before),
				PracticeSession.overall_score.is_not(None),
			)
		).scalars())


# ============================================================================
# LEADERBOARDS
# ============================================================================

def top_by_xp(db: Session, limit: int) -> List[Tuple[str, int]]:
	with _guard(db, "top_by_xp"):
		rows = db.execute(
			select(UserGamification.user_id, UserGamification.total_xp)
			.order_by(UserGamification.total_xp.desc(), UserGamification.user_id)
			.limit(limit)
		).all()
	return [(user_id, xp) for user_id, xp in rows]


def top_by_perfect_scores(db: Session, limit: int) -> List[Tuple[str, int]]:
	count = func.count().label("perfect")
	with _guard(db, "top_by_perfect_scores"):
		rows = db.execute(
			select(PracticeSession.user_id, count)
			.where(PracticeSession.overall_score == 100)
			.group_by(PracticeSession.user_id)
			.order_by(count.desc(), PracticeSession.user_id)
			.limit(limit)
		).all()
	return [(user_id, n) for user_id, n in rows]


def practice_days_by_user(db: Session) -> Dict[str, List[date]]:
	with _guard(db, "practice_days_by_user"):
		rows = db.execute(select(PracticeSession.user_id, PracticeSession.created_at)).all()
	days: Dict[str, set] = {}
	for user_id, stamp in rows:
		days.setdefault(user_id, set()).add(stamp.date())
	return {user_id: sorted(values) for user_id, values in days.items()}
