from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, Date, DateTime, Integer, JSON, String, Text, UniqueConstraint
from .db import Base


class Account(Base):
	__tablename__ = "accounts"
	# Students log in with their student id, admins with a chosen username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	role = Column(String(16), default="student", nullable=False)
	full_name = Column(String(256), nullable=True)
	grade = Column(Integer, nullable=True)
	class_section = Column(String(32), nullable=True)
	roll_number = Column(String(32), nullable=True)
	created_by = Column(String(128), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Lesson(Base):
	__tablename__ = "lessons"
	__table_args__ = (UniqueConstraint("category", "module_number", "level_number", name="uq_lesson_coordinates"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	category = Column(String(128), nullable=False, index=True)
	module_number = Column(Integer, nullable=False)
	level_number = Column(Integer, nullable=False)
	level_title = Column(String(256), nullable=False)
	explanation = Column(Text, nullable=True)
	practice_prompt = Column(Text, nullable=False)
	expected_duration_seconds = Column(Integer, default=60, nullable=False)
	feedback_focus_areas = Column(JSON, default=list, nullable=False)


class PracticeSession(Base):
	__tablename__ = "practice_sessions"
	# Append-only: one row per submission, never updated
	id = Column(String(64), primary_key=True)
	user_id = Column(String(128), nullable=False, index=True)
	category = Column(String(128), nullable=False)
	module_number = Column(Integer, nullable=False)
	level_number = Column(Integer, nullable=False)
	user_transcript = Column(Text, nullable=True)
	ai_example_text = Column(Text, nullable=True)
	ai_example_audio = Column(Text, nullable=True)  # base64 mp3
	feedback = Column(JSON, nullable=True)
	overall_score = Column(Integer, nullable=True)
	passed = Column(Boolean, default=False, nullable=False)
	used_hint = Column(Boolean, default=False, nullable=False)
	status = Column(String(16), default="completed", nullable=False)
	created_at = Column(DateTime, nullable=False, index=True)
	completed_at = Column(DateTime, nullable=True)


class UserProgress(Base):
	__tablename__ = "user_progress"
	__table_args__ = (
		UniqueConstraint("user_id", "category", "module_number", "level_number", name="uq_progress_lesson"),
	)
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(String(128), nullable=False, index=True)
	category = Column(String(128), nullable=False)
	module_number = Column(Integer, nullable=False)
	level_number = Column(Integer, nullable=False)
	# completed only ever goes False -> True, best_score only upwards
	completed = Column(Boolean, default=False, nullable=False)
	best_score = Column(Integer, default=0, nullable=False)
	attempts_count = Column(Integer, default=0, nullable=False)
	last_attempted_at = Column(DateTime, nullable=True)


class UserGamification(Base):
	__tablename__ = "user_gamification"
	user_id = Column(String(128), primary_key=True)
	total_xp = Column(Integer, default=0, nullable=False)
	level = Column(Integer, default=1, nullable=False)
	rank_title = Column(String(64), nullable=False)
	longest_streak = Column(Integer, default=0, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class DailyQuest(Base):
	__tablename__ = "daily_quests"
	__table_args__ = (UniqueConstraint("user_id", "quest_date", "slot", name="uq_daily_quest_slot"),)
	id = Column(String(64), primary_key=True)
	user_id = Column(String(128), nullable=False, index=True)
	quest_date = Column(Date, nullable=False)
	slot = Column(Integer, nullable=False)
	quest_type = Column(String(32), nullable=False)
	description = Column(String(256), nullable=False)
	target = Column(JSON, nullable=False)
	difficulty = Column(String(16), nullable=False)
	xp_reward = Column(Integer, nullable=False)
	completed = Column(Boolean, default=False, nullable=False)
	completed_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserAchievement(Base):
	__tablename__ = "user_achievements"
	__table_args__ = (UniqueConstraint("user_id", "achievement_key", name="uq_user_achievement"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(String(128), nullable=False, index=True)
	achievement_key = Column(String(64), nullable=False)
	achievement_tier = Column(String(16), nullable=False)
	unlocked_at = Column(DateTime, nullable=False)


class UserArtifact(Base):
	__tablename__ = "user_artifacts"
	__table_args__ = (UniqueConstraint("user_id", "artifact_name", name="uq_user_artifact"),)
	id = Column(Integer, primary_key=True, autoincrement=True)
	user_id = Column(String(128), nullable=False, index=True)
	artifact_type = Column(String(32), nullable=False)
	artifact_name = Column(String(64), nullable=False)
	artifact_rarity = Column(String(16), nullable=False)
	equipped = Column(Boolean, default=False, nullable=False)
	earned_at = Column(DateTime, nullable=False)
