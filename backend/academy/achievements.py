"""Achievement and artifact catalogs, and their idempotent unlocking."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from . import store
from .progression import calculate_streak


logger = logging.getLogger(__name__)

HIGH_SCORE = 90
LESSONS_PER_CATEGORY = 30

RARITY_POINTS: Mapping[str, int] = MappingProxyType({"common": 1, "rare": 3, "epic": 5, "legendary": 10})


@dataclass(frozen=True)
class UnlockCondition:
	kind: str
	value: int
	category: Optional[str] = None


@dataclass(frozen=True)
class AchievementProgress:
	"""Aggregate state an unlock decision is made from."""
	lessons_completed: int = 0
	perfect_scores: int = 0
	current_streak: int = 0
	consecutive_high_scores: int = 0
	weekend_practice: bool = False
	category_completions: Mapping[str, int] = field(default_factory=dict)
	total_xp: int = 0
	level: int = 1


def _condition_met(condition: UnlockCondition, progress: AchievementProgress) -> bool:
	kind = condition.kind
	if kind == "lessons_completed":
		return progress.lessons_completed >= condition.value
	if kind in ("perfect_score", "perfect_scores"):
		return progress.perfect_scores >= condition.value
	if kind == "streak_days":
		return progress.current_streak >= condition.value
	if kind == "consecutive_high_scores":
		return progress.consecutive_high_scores >= condition.value
	if kind == "weekend_practice":
		return progress.weekend_practice
	if kind == "category_complete":
		if condition.category is None:
			return any(count >= LESSONS_PER_CATEGORY for count in progress.category_completions.values())
		return progress.category_completions.get(condition.category, 0) >= condition.value
	if kind == "level_reached":
		return progress.level >= condition.value
	if kind == "total_xp":
		return progress.total_xp >= condition.value
	return False


# ==================== ACHIEVEMENTS ====================

@dataclass(frozen=True)
class Achievement:
	key: str
	name: str
	description: str
	tier: str
	xp_reward: int
	condition: UnlockCondition


# Priority order: lesson milestones, perfect score, streaks, then the rest
ACHIEVEMENTS: Tuple[Achievement, ...] = (
	Achievement("FIRST_LESSON", "First Steps", "Complete your first lesson", "bronze", 10, UnlockCondition("lessons_completed", 1)),
	Achievement("FIVE_LESSONS", "Getting Started", "Complete 5 lessons", "bronze", 25, UnlockCondition("lessons_completed", 5)),
	Achievement("TEN_LESSONS", "Dedicated Learner", "Complete 10 lessons", "silver", 50, UnlockCondition("lessons_completed", 10)),
	Achievement("TWENTY_LESSONS", "Rising Star", "Complete 20 lessons", "gold", 100, UnlockCondition("lessons_completed", 20)),
	Achievement("PERFECT_SCORE", "Perfectionist", "Score 100% on a lesson", "platinum", 50, UnlockCondition("perfect_score", 1)),
	Achievement("THREE_DAY_STREAK", "Getting Consistent", "Practice 3 days in a row", "bronze", 30, UnlockCondition("streak_days", 3)),
	Achievement("WEEK_WARRIOR", "Week Warrior", "Practice 7 days in a row", "silver", 75, UnlockCondition("streak_days", 7)),
	Achievement("CONSISTENT_HIGH", "Consistently Great", "Score 90+ on 5 consecutive lessons", "gold", 75, UnlockCondition("consecutive_high_scores", 5)),
	Achievement("WEEKEND_WARRIOR", "Weekend Warrior", "Practice on a weekend", "bronze", 20, UnlockCondition("weekend_practice", 1)),
	Achievement("CATEGORY_COMPLETE", "Category Champion", "Complete all lessons in a category", "platinum", 200, UnlockCondition("category_complete", LESSONS_PER_CATEGORY)),
)

ACHIEVEMENTS_BY_KEY: Mapping[str, Achievement] = MappingProxyType({a.key: a for a in ACHIEVEMENTS})


def select_achievement(progress: AchievementProgress, owned: Iterable[str]) -> Optional[Achievement]:
	"""The highest priority achievement the progress qualifies for and the user lacks."""
	owned_keys = set(owned)
	for achievement in ACHIEVEMENTS:
		if achievement.key not in owned_keys and _condition_met(achievement.condition, progress):
			return achievement
	return None


def unlock_achievement(db: Session, user_id: str, achievement: Achievement, unlocked_at: datetime) -> bool:
	"""Record the unlock. Unlocking something already owned is a no-op returning False."""
	created = store.insert_achievement(db, user_id, achievement.key, achievement.tier, unlocked_at)
	if created:
		logger.info("Unlocked achievement %s (%s) for %s", achievement.key, achievement.tier, user_id)
	return created


def check_achievements(db: Session, user_id: str, progress: AchievementProgress, unlocked_at: datetime) -> Optional[Achievement]:
	"""Unlock at most one newly qualifying achievement and return it."""
	achievement = select_achievement(progress, store.achievement_keys(db, user_id))
	if achievement is None:
		return None
	if not unlock_achievement(db, user_id, achievement, unlocked_at):
		return None
	return achievement


def _leading_run(scores: Iterable[int], minimum: int) -> int:
	run = 0
	for score in scores:
		if score < minimum:
			break
		run += 1
	return run


def load_progress(db: Session, user_id: str, today: date) -> AchievementProgress:
	days = store.practice_days(db, user_id)
	gamification = store.read_gamification(db, user_id)
	return AchievementProgress(
		lessons_completed=store.completed_lesson_count(db, user_id),
		perfect_scores=store.perfect_score_count(db, user_id),
		current_streak=calculate_streak(days, today),
		consecutive_high_scores=_leading_run(store.recent_scores(db, user_id, 10), HIGH_SCORE),
		weekend_practice=any(day.weekday() >= 5 for day in days),
		category_completions=store.category_completion_counts(db, user_id),
		total_xp=gamification.total_xp if gamification else 0,
		level=gamification.level if gamification else 1,
	)


# ==================== ARTIFACTS ====================

@dataclass(frozen=True)
class Artifact:
	artifact_type: str
	name: str
	description: str
	rarity: str
	icon: str
	requirement: str
	condition: UnlockCondition


ARTIFACTS: Tuple[Artifact, ...] = (
	Artifact("microphone", "Bronze Mic", "Your first perfect score achievement", "common", "🎤", "1 perfect score", UnlockCondition("perfect_scores", 1)),
	Artifact("microphone", "Silver Mic", "Consistent excellence in speaking", "rare", "🎤", "5 perfect scores", UnlockCondition("perfect_scores", 5)),
	Artifact("microphone", "Gold Mic", "A true master of communication", "epic", "🎤", "10 perfect scores", UnlockCondition("perfect_scores", 10)),
	Artifact("microphone", "Diamond Mic", "Elite speaking champion", "legendary", "🎤", "25 perfect scores", UnlockCondition("perfect_scores", 25)),
	Artifact("microphone", "Legendary Mic", "The ultimate speaking achievement", "legendary", "🎤", "50 perfect scores", UnlockCondition("perfect_scores", 50)),
	Artifact("certificate", "Public Speaking Certificate", "Mastered all public speaking lessons", "epic", "📜", "Complete all lessons in category",
		UnlockCondition("category_complete", LESSONS_PER_CATEGORY, "Public Speaking Fundamentals")),
	Artifact("certificate", "Storytelling Certificate", "Expert storyteller and narrator", "epic", "📜", "Complete all lessons in category",
		UnlockCondition("category_complete", LESSONS_PER_CATEGORY, "Storytelling")),
	Artifact("constellation", "Orion Constellation", "7 days of consistent practice", "rare", "⭐", "7-day streak", UnlockCondition("streak_days", 7)),
	Artifact("constellation", "Phoenix Constellation", "30 days of dedication", "epic", "🌟", "30-day streak", UnlockCondition("streak_days", 30)),
	Artifact("constellation", "Dragon Constellation", "100 days of mastery", "legendary", "✨", "100-day streak", UnlockCondition("streak_days", 100)),
	Artifact("avatar_frame", "Bronze Frame", "Your journey begins", "common", "🔶", "Reach Level 5", UnlockCondition("level_reached", 5)),
	Artifact("avatar_frame", "Silver Frame", "Rising through the ranks", "rare", "🔷", "Reach Level 15", UnlockCondition("level_reached", 15)),
	Artifact("avatar_frame", "Gold Frame", "Elite communicator status", "epic", "💠", "Reach Level 25", UnlockCondition("level_reached", 25)),
	Artifact("avatar_frame", "Diamond Frame", "Legendary speaker recognized", "legendary", "💎", "Reach Level 40", UnlockCondition("level_reached", 40)),
	Artifact("theme", "Ocean Theme", "Calm and flowing like water", "common", "🌊", "500 Total XP", UnlockCondition("total_xp", 500)),
	Artifact("theme", "Forest Theme", "Natural and grounded", "common", "🌲", "500 Total XP", UnlockCondition("total_xp", 500)),
	Artifact("theme", "Galaxy Theme", "Infinite possibilities", "legendary", "🌌", "5000 Total XP", UnlockCondition("total_xp", 5000)),
)

ARTIFACTS_BY_NAME: Mapping[str, Artifact] = MappingProxyType({a.name: a for a in ARTIFACTS})


def qualifying_artifacts(progress: AchievementProgress) -> List[Artifact]:
	return [artifact for artifact in ARTIFACTS if _condition_met(artifact.condition, progress)]


def unlock_artifacts(db: Session, user_id: str, progress: AchievementProgress, earned_at: datetime) -> List[Artifact]:
	"""Grant every artifact the progress qualifies for; returns only the new ones."""
	granted = []
	for artifact in qualifying_artifacts(progress):
		if store.insert_artifact(db, user_id, artifact.artifact_type, artifact.name, artifact.rarity, earned_at):
			logger.info("Awarded artifact %s to %s", artifact.name, user_id)
			granted.append(artifact)
	return granted


def rarity_score(rarities: Iterable[str]) -> int:
	return sum(RARITY_POINTS.get(rarity, 0) for rarity in rarities)
