import random
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from academy import models  # noqa: F401  registers tables
from academy import store
from academy.clock import FixedClock
from academy.db import Base
from academy.models import Lesson

# A Wednesday morning
NOW = datetime(2026, 3, 11, 9, 30, tzinfo=ZoneInfo("UTC"))
CATEGORY = "Public Speaking Fundamentals"


@pytest.fixture
def engine(tmp_path):
    """Temporary SQLite database with the full schema."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'test_academy.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def lesson(db):
    row = Lesson(
        category=CATEGORY,
        module_number=1,
        level_number=5,
        level_title="Introduce Yourself",
        explanation="Say who you are and what you enjoy.",
        practice_prompt="Introduce yourself to a new classmate in under a minute.",
        expected_duration_seconds=60,
        feedback_focus_areas=["Clarity", "Confidence"],
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def add_session(db):
    """Record a practice session; `minutes_ago` is relative to NOW."""
    counter = {"n": 0}

    def _add(user_id="STU001", score=80, *, minutes_ago=0, days_ago=0, category=CATEGORY,
             module_number=1, level_number=5, passed=None, used_hint=False):
        counter["n"] += 1
        at = NOW - timedelta(days=days_ago, minutes=minutes_ago)
        return store.record_session(
            db,
            session_id=f"session_{counter['n']}",
            user_id=user_id,
            category=category,
            module_number=module_number,
            level_number=level_number,
            transcript="practice",
            feedback={},
            overall_score=score,
            passed=score >= 60 if passed is None else passed,
            created_at=at,
            used_hint=used_hint,
        )

    return _add
