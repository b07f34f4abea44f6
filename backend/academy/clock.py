from __future__ import annotations
from datetime import date, datetime, tzinfo
from zoneinfo import ZoneInfo

from .settings import settings


class Clock:
	"""Source of "now" for the core; swapped for a fixed clock in tests."""

	def __init__(self, tz: tzinfo | None = None) -> None:
		self.tz = tz or ZoneInfo(settings.school_timezone)

	def now(self) -> datetime:
		return datetime.now(self.tz)

	def today(self) -> date:
		return self.now().date()


class FixedClock(Clock):
	def __init__(self, moment: datetime) -> None:
		super().__init__(moment.tzinfo or ZoneInfo("UTC"))
		self.moment = moment

	def now(self) -> datetime:
		return self.moment


_clock = Clock()


def get_clock() -> Clock:
	return _clock
