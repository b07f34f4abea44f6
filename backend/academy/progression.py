"""XP, level, rank and streak arithmetic. Pure functions over static tables."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional, Tuple

from .scoring import round_half_up


XP_PER_LEVEL = 100

LESSON_COMPLETION_XP = 10
HIGH_SCORE_BONUS_XP = 5
HIGH_SCORE_BONUS_MIN = 90
FIRST_TIME_CATEGORY_XP = 15


@dataclass(frozen=True)
class Rank:
	level: int
	title: str
	icon: str
	description: str

	@property
	def xp_required(self) -> int:
		return total_xp_for_level(self.level)


# Strictly increasing in level, starting at 1
RANKS: Tuple[Rank, ...] = (
	Rank(1, "Novice Speaker", "🥉", "Just starting your speaking journey"),
	Rank(6, "Confident Voice", "🎤", "Building confidence in communication"),
	Rank(11, "Articulate Student", "💬", "Expressing ideas clearly and effectively"),
	Rank(16, "Skilled Orator", "🎯", "Mastering the art of persuasion"),
	Rank(21, "Master Communicator", "🌟", "Captivating audiences with ease"),
	Rank(26, "Elite Speaker", "👑", "Among the top communicators"),
	Rank(31, "Legendary Voice", "💎", "Your voice inspires others"),
	Rank(36, "Academy Champion", "⚡", "A true champion of communication"),
	Rank(41, "Speaking Grandmaster", "🔥", "The highest honor in the Speaking Academy"),
)


# ==================== LEVELS ====================

def level_for_xp(total_xp: int) -> int:
	if total_xp < 0:
		raise ValueError(f"total XP cannot be negative: {total_xp}")
	return total_xp // XP_PER_LEVEL + 1


def xp_in_current_level(total_xp: int) -> int:
	return total_xp - total_xp_for_level(level_for_xp(total_xp))


def xp_to_next_level(total_xp: int) -> int:
	return XP_PER_LEVEL - xp_in_current_level(total_xp)


def total_xp_for_level(level: int) -> int:
	"""XP at which a level starts."""
	return (level - 1) * XP_PER_LEVEL


def level_progress(total_xp: int) -> int:
	"""Percent of the way through the current level."""
	return round_half_up(xp_in_current_level(total_xp) * 100 / XP_PER_LEVEL)


# ==================== RANKS ====================

def rank_for_level(level: int) -> Rank:
	current = RANKS[0]
	for rank in RANKS:
		if rank.level > level:
			break
		current = rank
	return current


@dataclass(frozen=True)
class NextRank:
	rank: Rank
	xp_needed: int


def next_rank(level: int, total_xp: Optional[int] = None) -> Optional[NextRank]:
	"""The rank after the one held at `level`, or None at the top rank."""
	current = rank_for_level(level)
	following = [rank for rank in RANKS if rank.level > current.level]
	if not following:
		return None
	upcoming = following[0]
	reference = total_xp if total_xp is not None else total_xp_for_level(level)
	return NextRank(rank=upcoming, xp_needed=max(0, upcoming.xp_required - reference))


@dataclass(frozen=True)
class LevelChange:
	old_xp: int
	new_xp: int
	old_level: int
	new_level: int
	old_rank: Rank
	new_rank: Rank

	@property
	def leveled_up(self) -> bool:
		return self.new_level > self.old_level

	@property
	def ranked_up(self) -> bool:
		return self.old_rank.title != self.new_rank.title


def level_change(old_xp: int, new_xp: int) -> LevelChange:
	old_level = level_for_xp(old_xp)
	new_level = level_for_xp(new_xp)
	return LevelChange(
		old_xp=old_xp,
		new_xp=new_xp,
		old_level=old_level,
		new_level=new_level,
		old_rank=rank_for_level(old_level),
		new_rank=rank_for_level(new_level),
	)


# ==================== XP GAIN ====================

def lesson_xp(score: int, *, first_time_category: bool = False) -> int:
	"""XP for a passed lesson. Never decreases as the score goes up."""
	xp = LESSON_COMPLETION_XP
	if score >= HIGH_SCORE_BONUS_MIN:
		xp += HIGH_SCORE_BONUS_XP
	if first_time_category:
		xp += FIRST_TIME_CATEGORY_XP
	return xp


# ==================== STREAKS ====================

def calculate_streak(practice_days: Iterable[date], today: date) -> int:
	"""Consecutive calendar days with practice, counting back from today."""
	days = set(practice_days)
	streak = 0
	current = today
	while current in days:
		streak += 1
		current -= timedelta(days=1)
	return streak


def longest_streak(practice_days: Iterable[date]) -> int:
	days = sorted(set(practice_days))
	best = run = 0
	previous: Optional[date] = None
	for day in days:
		run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
		best = max(best, run)
		previous = day
	return best
