# tests/test_api.py
import random

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from academy import store
from academy.clock import FixedClock, get_clock
from academy.db import get_db
from academy.errors import AIServiceUnavailable, PersistenceUnavailable
from academy.main import app
from academy.models import Account, PracticeSession, UserProgress
from academy.routers import feedback as feedback_router
from academy.routers.auth import hash_password
from academy.routers.feedback import get_ai_client
from academy.routers.gamification import get_quest_rng
from conftest import CATEGORY, NOW

JUDGEMENT = {
    "content_score": 90,
    "overall_score": 40,
    "passed": False,
    "strengths": ["Clear opening", "Good eye contact", "Friendly tone"],
    "improvements": ["Slow down", "Add an example", "Stronger close"],
    "detailed_feedback": "Nice introduction.",
    "focus_area_scores": {"Clarity": 88, "Confidence": 92},
    "linguistic_analysis": {
        "grammar": {"score": 80, "suggestions": []},
        "sentence_formation": {"score": 85, "complexity_level": "moderate", "suggestions": []},
        "vocabulary": {"score": 90, "advanced_words_used": [], "suggestions": []},
        "delivery": {"score": 82, "pace_quality": "good", "filler_word_frequency": "low", "suggestions": []},
    },
}


class FakeAIClient:
    def __init__(self, judgement=None, fail_example=False):
        self.judgement = judgement if judgement is not None else JUDGEMENT
        self.fail_example = fail_example

    async def transcribe(self, audio, *, filename="recording.webm", content_type="audio/webm"):
        return "Hello hello my name is Asha and I I enjoy reading books"

    async def complete(self, messages, *, temperature=0.7, max_tokens=None, json_mode=False):
        if self.fail_example:
            raise AIServiceUnavailable("completion", "HTTP 500")
        return "Hello, my name is Asha and I love reading books."

    async def judge(self, system, prompt):
        return dict(self.judgement)

    async def synthesize(self, text):
        return b"mp3-bytes"

    async def aclose(self):
        pass


@pytest.fixture
def fake_ai():
    return FakeAIClient()


@pytest.fixture
def client(session_factory, fake_ai):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: FixedClock(NOW)
    app.dependency_overrides[get_ai_client] = lambda: fake_ai
    app.dependency_overrides[get_quest_rng] = lambda: random.Random(7)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def accounts(db):
    db.add(Account(username="admin", password_hash=hash_password("admin-pass"), role="admin", full_name="Admin"))
    db.add(Account(username="STU001", password_hash=hash_password("student-pass"), role="student", full_name="Asha", grade=7))
    db.commit()


def _login(client, username, password):
    response = client.post("/auth/token", data={"username": username, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def student(client, accounts):
    return _login(client, "STU001", "student-pass")


@pytest.fixture
def admin(client, accounts):
    return _login(client, "admin", "admin-pass")


def _submit(client, headers, level_number=5):
    return client.post(
        "/feedback",
        headers=headers,
        files={"audio": ("recording.webm", b"fake-audio", "audio/webm")},
        data={"category": CATEGORY, "module_number": "1", "level_number": str(level_number), "duration_seconds": "30"},
    )


def test_login_rejects_bad_password(client, accounts):
    response = client.post("/auth/token", data={"username": "STU001", "password": "nope"})
    assert response.status_code == 401


def test_me(client, student):
    response = client.get("/auth/me", headers=student)
    assert response.json() == {"username": "STU001", "role": "student"}


def test_requests_need_a_token(client):
    assert client.get("/gamification/profile").status_code == 401


def test_admin_creates_student(client, admin):
    response = client.post(
        "/auth/students",
        headers=admin,
        json={"full_name": "Ravi Kumar", "password": "secret1", "grade": 8, "student_id": "STU777"},
    )
    assert response.status_code == 201
    assert response.json()["student_id"] == "STU777"
    _login(client, "STU777", "secret1")

    duplicate = client.post(
        "/auth/students",
        headers=admin,
        json={"full_name": "Ravi Kumar", "password": "secret1", "grade": 8, "student_id": "STU777"},
    )
    assert duplicate.status_code == 409


def test_generated_student_id(client, admin):
    response = client.post("/auth/students", headers=admin, json={"full_name": "Mei", "password": "secret1", "grade": 5})
    assert response.status_code == 201
    assert response.json()["student_id"].startswith("STU")


def test_students_cannot_create_accounts(client, student):
    response = client.post("/auth/students", headers=student, json={"full_name": "X", "password": "secret1", "grade": 5})
    assert response.status_code == 403


def test_get_lesson(client, student, lesson):
    response = client.get(f"/lessons/{CATEGORY}/1/5", headers=student)
    assert response.status_code == 200
    body = response.json()
    assert body["pass_threshold"] == 60
    assert body["content_weight"] == 0.7
    assert body["feedback_focus_areas"] == ["Clarity", "Confidence"]


def test_missing_lesson_is_404(client, student):
    assert client.get(f"/lessons/{CATEGORY}/9/9", headers=student).status_code == 404


def test_feedback_flow(client, student, lesson, db):
    response = _submit(client, student)
    assert response.status_code == 200
    body = response.json()
    assert body["score"] == 89
    assert body["passed"] is True
    assert body["transcript"] == "Hello my name is Asha and I enjoy reading books"
    assert body["feedback"]["overall_score"] == 89
    assert body["feedback"]["performance_tier"] == "EXCELLENT"
    assert body["feedback"]["transcript_metrics"]["word_count"] == 10
    assert body["feedback"]["delivery_score"] is not None
    assert body["ai_example_text"].startswith("Hello, my name is Asha")
    # 10 completion + 15 new category, then FIRST_LESSON
    assert body["gamification"]["lesson_xp"] == 25
    assert body["gamification"]["achievement"] == "FIRST_LESSON"
    assert body["gamification"]["xp_earned"] == 35

    stored = db.get(PracticeSession, body["session_id"])
    assert stored.overall_score == 89
    assert stored.ai_example_audio is not None


def test_second_attempt_tracks_improvement(client, student, lesson):
    _submit(client, student)
    body = _submit(client, student).json()
    assert body["feedback"]["previous_score"] == 89
    assert body["feedback"]["improvement"] == 0


def test_example_answer_is_optional(client, student, lesson):
    app.dependency_overrides[get_ai_client] = lambda: FakeAIClient(fail_example=True)
    response = _submit(client, student)
    assert response.status_code == 200
    assert response.json()["ai_example_text"] is None


def test_unscorable_judgement_is_502_and_not_stored(client, student, lesson, db):
    judgement = dict(JUDGEMENT, linguistic_analysis={"grammar": {"score": 80}})
    app.dependency_overrides[get_ai_client] = lambda: FakeAIClient(judgement=judgement)
    response = _submit(client, student)
    assert response.status_code == 502
    assert db.execute(select(func.count()).select_from(PracticeSession)).scalar_one() == 0


def test_feedback_for_missing_lesson(client, student):
    assert _submit(client, student, level_number=9).status_code == 404


def test_daily_quests_endpoint_is_idempotent(client, student):
    first = client.get("/gamification/quests", headers=student).json()
    second = client.get("/gamification/quests", headers=student).json()
    assert len(first) == 3
    assert [q["id"] for q in first] == [q["id"] for q in second]
    assert [q["slot"] for q in first] == [1, 2, 3]


def test_profile_and_leaderboards(client, student, lesson):
    _submit(client, student)
    profile = client.get("/gamification/profile", headers=student).json()
    assert profile["total_xp"] == 35
    assert profile["current_streak"] == 1

    xp_board = client.get("/gamification/leaderboard/xp", headers=student).json()
    assert xp_board == [{"rank": 1, "user_id": "STU001", "value": 35}]
    streak_board = client.get("/gamification/leaderboard/streak", headers=student).json()
    assert streak_board[0]["value"] == 1
    assert client.get("/gamification/leaderboard/perfect_scores", headers=student).json() == []
    assert client.get("/gamification/leaderboard/karma", headers=student).status_code == 404


def test_achievements_and_artifacts(client, student, lesson):
    _submit(client, student)
    achievements = client.get("/gamification/achievements", headers=student).json()
    unlocked = [a["key"] for a in achievements if a["unlocked"]]
    assert unlocked == ["FIRST_LESSON"]

    artifacts = client.get("/gamification/artifacts", headers=student).json()
    assert artifacts == {"artifacts": [], "rarity_score": 0}
    assert client.post("/gamification/artifacts/Ocean Theme/equip", headers=student).status_code == 404


def test_extra_student_fields_are_ignored(client, admin, db):
    response = client.post(
        "/auth/students",
        headers=admin,
        json={"full_name": "Lena", "password": "secret1", "grade": 6, "student_id": "STU321", "age": 11},
    )
    assert response.status_code == 201
    assert not hasattr(db.get(Account, "STU321"), "age")


def test_session_save_failure_is_503(client, student, lesson, db, monkeypatch):
    def unavailable(*args, **kwargs):
        raise PersistenceUnavailable("record_session", "OperationalError")

    monkeypatch.setattr(store, "record_session", unavailable)
    response = _submit(client, student)
    assert response.status_code == 503
    assert db.execute(select(func.count()).select_from(PracticeSession)).scalar_one() == 0


def test_gamification_crash_still_returns_saved_session(client, student, lesson, db, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("quest table missing")

    monkeypatch.setattr(feedback_router, "process_session", broken)
    response = _submit(client, student)
    assert response.status_code == 200
    body = response.json()
    assert body["score"] == 89
    assert body["gamification"]["xp_earned"] == 0
    assert body["gamification"]["completed_quests"] == []
    assert db.get(PracticeSession, body["session_id"]).overall_score == 89


def test_progress_failure_after_save_is_swallowed(client, student, lesson, db, monkeypatch):
    def unavailable(*args, **kwargs):
        raise PersistenceUnavailable("upsert_progress", "OperationalError")

    monkeypatch.setattr(store, "upsert_progress", unavailable)
    response = _submit(client, student)
    assert response.status_code == 200
    body = response.json()
    assert body["feedback"]["adaptive_suggestion"] is None
    assert db.get(PracticeSession, body["session_id"]) is not None
    assert db.execute(select(func.count()).select_from(UserProgress)).scalar_one() == 0
