import os

# Keep the application's own engine in memory; tests bind their own engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coursequiz.auth import create_token
from coursequiz.database import create_tables, get_db
from coursequiz.models.quiz_attempt import QuizAttempt, AttemptStatus
from coursequiz.services.attempt_manager import QuizAttemptManager
from coursequiz.services.attempt_store import SqlAlchemyAttemptStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=datetime(2026, 3, 2, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(db_session):
    return SqlAlchemyAttemptStore(db_session)


@pytest.fixture
def manager(store, clock):
    return QuizAttemptManager(store, clock=clock)


@pytest.fixture
def make_completed(store, clock):
    """Insert a finished attempt with explicit results."""
    counter = {"n": 0}

    def _make(student_id="student-1", lesson_id="lesson-1", course_id="course-1",
              score=0, correct_answers=0, total_questions=10, time_spent=60,
              status=AttemptStatus.COMPLETED):
        counter["n"] += 1
        attempt = QuizAttempt(
            student_id=student_id,
            course_id=course_id,
            lesson_id=lesson_id,
            attempt_number=counter["n"],
            status=status,
            active_key=None,
            started_at=clock(),
            completed_at=clock(),
            time_spent=time_spent,
            answers="[]",
            total_questions=total_questions,
            correct_answers=correct_answers,
            score=score,
            passed=score >= 70,
            passing_threshold=70,
            created_at=clock(),
            updated_at=clock(),
        )
        return store.insert(attempt)

    return _make


@pytest.fixture
def client(session_factory, clock):
    from coursequiz.main import app
    from coursequiz.routes.quiz import get_attempt_manager, get_attempt_store

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def override_get_attempt_manager(store=Depends(get_attempt_store)):
        return QuizAttemptManager(store, clock=clock)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_attempt_manager] = override_get_attempt_manager
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user_id="student-1", roles=("student",)):
    return {"Authorization": "Bearer {}".format(create_token(user_id, list(roles)))}


@pytest.fixture
def student_headers():
    return auth_headers()
