"""
Post-session gamification. Runs after the session row is committed; every step
is best-effort and a failure only costs that step.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from . import store
from .achievements import Achievement, AchievementProgress, Artifact, check_achievements, load_progress, unlock_artifacts
from .errors import AcademyError
from .progression import (
	LevelChange,
	calculate_streak,
	lesson_xp,
	level_for_xp,
	level_progress,
	next_rank,
	rank_for_level,
	xp_in_current_level,
	xp_to_next_level,
)
from .quests import CompletedQuest, SessionEvent, check_quest_completion


logger = logging.getLogger(__name__)


@dataclass
class GamificationOutcome:
	lesson_xp: int = 0
	quest_xp: int = 0
	achievement_xp: int = 0
	level_change: Optional[LevelChange] = None
	completed_quests: List[CompletedQuest] = field(default_factory=list)
	achievement: Optional[Achievement] = None
	artifacts: List[Artifact] = field(default_factory=list)
	current_streak: int = 0

	@property
	def total_xp_earned(self) -> int:
		return self.lesson_xp + self.quest_xp + self.achievement_xp

	def as_dict(self) -> Dict[str, Any]:
		change = self.level_change
		return {
			"xp_earned": self.total_xp_earned,
			"lesson_xp": self.lesson_xp,
			"quest_xp": self.quest_xp,
			"achievement_xp": self.achievement_xp,
			"leveled_up": bool(change and change.leveled_up),
			"ranked_up": bool(change and change.ranked_up),
			"old_level": change.old_level if change else None,
			"new_level": change.new_level if change else None,
			"rank": change.new_rank.title if change else None,
			"completed_quests": [quest.quest_id for quest in self.completed_quests],
			"achievement": self.achievement.key if self.achievement else None,
			"artifacts": [artifact.name for artifact in self.artifacts],
			"current_streak": self.current_streak,
		}


def process_session(db: Session, event: SessionEvent, today: date) -> GamificationOutcome:
	outcome = GamificationOutcome()

	if event.passed:
		try:
			first_time = not store.category_practiced_before(db, event.user_id, event.category, event.timestamp)
			outcome.lesson_xp = lesson_xp(event.score, first_time_category=first_time)
		except AcademyError as err:
			logger.warning("Lesson XP skipped for session %s: %s", event.session_id, err)

	completion = check_quest_completion(db, event, today)
	outcome.completed_quests = list(completion.completed)
	outcome.quest_xp = completion.xp

	progress: Optional[AchievementProgress] = None
	try:
		progress = load_progress(db, event.user_id, today)
		outcome.current_streak = progress.current_streak
		outcome.achievement = check_achievements(db, event.user_id, progress, event.timestamp)
		if outcome.achievement is not None:
			outcome.achievement_xp = outcome.achievement.xp_reward
	except AcademyError as err:
		logger.warning("Achievement check skipped for session %s: %s", event.session_id, err)

	if outcome.total_xp_earned:
		try:
			outcome.level_change = store.award_xp(db, event.user_id, outcome.total_xp_earned)
			if outcome.level_change.leveled_up:
				logger.info("%s reached level %d", event.user_id, outcome.level_change.new_level)
		except AcademyError as err:
			# Quests and achievements are already marked done, so this XP is not retried
			logger.error(
				"XP award of %d dropped for %s, session %s (lesson %d, quests %s, achievement %s): %s",
				outcome.total_xp_earned,
				event.user_id,
				event.session_id,
				outcome.lesson_xp,
				[quest.quest_id for quest in outcome.completed_quests],
				outcome.achievement.key if outcome.achievement else None,
				err,
			)

	if progress is not None:
		if outcome.level_change is not None:
			progress = replace(progress, total_xp=outcome.level_change.new_xp, level=outcome.level_change.new_level)
		try:
			outcome.artifacts = unlock_artifacts(db, event.user_id, progress, event.timestamp)
			store.update_longest_streak(db, event.user_id, progress.current_streak)
		except AcademyError as err:
			logger.warning("Artifact/streak bookkeeping skipped for session %s: %s", event.session_id, err)

	return outcome


def profile_summary(db: Session, user_id: str, today: date) -> Dict[str, Any]:
	row = store.read_gamification(db, user_id)
	total_xp = row.total_xp if row else 0
	level = level_for_xp(total_xp)
	rank = rank_for_level(level)
	upcoming = next_rank(level, total_xp)
	return {
		"user_id": user_id,
		"total_xp": total_xp,
		"level": level,
		"xp_in_current_level": xp_in_current_level(total_xp),
		"xp_to_next_level": xp_to_next_level(total_xp),
		"level_progress": level_progress(total_xp),
		"rank": {"title": rank.title, "icon": rank.icon, "description": rank.description},
		"next_rank": (
			{"title": upcoming.rank.title, "level": upcoming.rank.level, "xp_needed": upcoming.xp_needed}
			if upcoming else None
		),
		"current_streak": calculate_streak(store.practice_days(db, user_id), today),
		"longest_streak": row.longest_streak if row else 0,
	}
