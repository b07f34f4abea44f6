from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .. import store
from ..db import get_db
from ..scoring import content_weight, linguistic_weight, pass_threshold
from .auth import User, get_current_user


router = APIRouter(prefix="/lessons", tags=["lessons"])


class LessonOut(BaseModel):
	category: str
	module_number: int
	level_number: int
	level_title: str
	explanation: Optional[str] = None
	practice_prompt: str
	expected_duration_seconds: int
	feedback_focus_areas: List[str]
	pass_threshold: int
	content_weight: float
	linguistic_weight: float


@router.get("/{category}/{module_number}/{level_number}", response_model=LessonOut)
def get_lesson(
	category: str,
	module_number: int,
	level_number: int,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	lesson = store.get_lesson(db, category, module_number, level_number)
	return LessonOut(
		category=lesson.category,
		module_number=lesson.module_number,
		level_number=lesson.level_number,
		level_title=lesson.level_title,
		explanation=lesson.explanation,
		practice_prompt=lesson.practice_prompt,
		expected_duration_seconds=lesson.expected_duration_seconds,
		feedback_focus_areas=list(lesson.feedback_focus_areas or []),
		pass_threshold=pass_threshold(lesson.level_number),
		content_weight=float(content_weight(lesson.level_number)),
		linguistic_weight=float(linguistic_weight(lesson.level_number)),
	)
