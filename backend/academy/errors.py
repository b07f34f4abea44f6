"""Error taxonomy shared by the scoring and progression code."""
from __future__ import annotations
from typing import Any


class AcademyError(Exception):
	"""Base class for errors raised by the academy core."""


class ScoringError(AcademyError):
	"""The AI judgement could not be turned into a score."""


class MissingScoreComponent(ScoringError):
	def __init__(self, component: str) -> None:
		super().__init__(f"score component '{component}' is missing and no fallback is configured")
		self.component = component


class InvalidScoreRange(ScoringError):
	def __init__(self, component: str, value: Any) -> None:
		super().__init__(f"score component '{component}' is outside [0, 100]: {value!r}")
		self.component = component
		self.value = value


class PersistenceUnavailable(AcademyError):
	def __init__(self, operation: str, detail: str | None = None) -> None:
		message = f"persistence operation failed: {operation}"
		if detail:
			message = f"{message} ({detail})"
		super().__init__(message)
		self.operation = operation


class LessonNotFound(AcademyError):
	def __init__(self, category: str, module_number: int, level_number: int) -> None:
		super().__init__(f"lesson not found: {category} / module {module_number} / level {level_number}")
		self.category = category
		self.module_number = module_number
		self.level_number = level_number


class AIServiceUnavailable(AcademyError):
	def __init__(self, operation: str, detail: str | None = None) -> None:
		message = f"AI service call failed: {operation}"
		if detail:
			message = f"{message} ({detail})"
		super().__init__(message)
		self.operation = operation
