from __future__ import annotations

import random
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import store
from ..achievements import ACHIEVEMENTS, ARTIFACTS_BY_NAME, rarity_score
from ..clock import Clock, get_clock
from ..db import get_db
from ..gamification import profile_summary
from ..progression import calculate_streak
from ..quests import ensure_daily_quests, load_signals
from ..settings import settings
from .auth import User, get_current_user


router = APIRouter(prefix="/gamification", tags=["gamification"])

LEADERBOARDS = ("xp", "streak", "perfect_scores")


def get_quest_rng() -> random.Random:
	return random.Random()


class QuestOut(BaseModel):
	id: str
	slot: int
	quest_type: str
	description: str
	target: Dict[str, Any]
	difficulty: str
	xp_reward: int
	completed: bool


class AchievementOut(BaseModel):
	key: str
	name: str
	description: str
	tier: str
	xp_reward: int
	unlocked: bool
	unlocked_at: Optional[str] = None


class ArtifactOut(BaseModel):
	name: str
	artifact_type: str
	rarity: str
	icon: Optional[str] = None
	description: Optional[str] = None
	equipped: bool
	earned_at: str


class ArtifactsResponse(BaseModel):
	artifacts: List[ArtifactOut]
	rarity_score: int


class LeaderboardEntry(BaseModel):
	rank: int
	user_id: str
	value: int


@router.get("/profile")
def profile(user: User = Depends(get_current_user), db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
	return profile_summary(db, user.username, clock.today())


@router.get("/quests", response_model=List[QuestOut])
def daily_quests(
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	clock: Clock = Depends(get_clock),
	rng: random.Random = Depends(get_quest_rng),
):
	today = clock.today()
	signals = load_signals(db, user.username, today, settings.weak_category_threshold)
	rows = ensure_daily_quests(db, user.username, today, signals, rng)
	return [
		QuestOut(
			id=row.id,
			slot=row.slot,
			quest_type=row.quest_type,
			description=row.description,
			target=dict(row.target or {}),
			difficulty=row.difficulty,
			xp_reward=row.xp_reward,
			completed=row.completed,
		)
		for row in rows
	]


@router.get("/achievements", response_model=List[AchievementOut])
def achievements(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	unlocked = {row.achievement_key: row for row in store.list_achievements(db, user.username)}
	out = []
	for achievement in ACHIEVEMENTS:
		row = unlocked.get(achievement.key)
		out.append(AchievementOut(
			key=achievement.key,
			name=achievement.name,
			description=achievement.description,
			tier=achievement.tier,
			xp_reward=achievement.xp_reward,
			unlocked=row is not None,
			unlocked_at=row.unlocked_at.isoformat() if row is not None else None,
		))
	return out


@router.get("/artifacts", response_model=ArtifactsResponse)
def artifacts(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = store.list_artifacts(db, user.username)
	out = []
	for row in rows:
		entry = ARTIFACTS_BY_NAME.get(row.artifact_name)
		out.append(ArtifactOut(
			name=row.artifact_name,
			artifact_type=row.artifact_type,
			rarity=row.artifact_rarity,
			icon=entry.icon if entry else None,
			description=entry.description if entry else None,
			equipped=row.equipped,
			earned_at=row.earned_at.isoformat(),
		))
	return ArtifactsResponse(artifacts=out, rarity_score=rarity_score(row.artifact_rarity for row in rows))


@router.post("/artifacts/{name}/equip")
def equip(name: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not store.equip_artifact(db, user.username, name):
		raise HTTPException(status_code=404, detail="artifact not owned")
	return {"success": True, "equipped": name}


@router.get("/leaderboard/{board}", response_model=List[LeaderboardEntry])
def leaderboard(
	board: str,
	limit: int = Query(default=10, ge=1, le=100),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	clock: Clock = Depends(get_clock),
):
	if board == "xp":
		rows = store.top_by_xp(db, limit)
	elif board == "perfect_scores":
		rows = store.top_by_perfect_scores(db, limit)
	elif board == "streak":
		today = clock.today()
		streaks = [(user_id, calculate_streak(days, today)) for user_id, days in store.practice_days_by_user(db).items()]
		rows = sorted((entry for entry in streaks if entry[1] > 0), key=lambda entry: (-entry[1], entry[0]))[:limit]
	else:
		raise HTTPException(status_code=404, detail=f"unknown leaderboard, expected one of {', '.join(LEADERBOARDS)}")
	return [LeaderboardEntry(rank=i, user_id=user_id, value=value) for i, (user_id, value) in enumerate(rows, start=1)]
