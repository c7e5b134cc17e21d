"""
Attempt storage port and its SQLAlchemy implementation.

The Quiz Attempt Manager only talks to `AttemptStore`, so the persistence
engine can be swapped without touching lifecycle rules. Criteria are plain
dicts of column name -> value, ordering is a list of (column, direction).
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from coursequiz.models.quiz_attempt import QuizAttempt
from coursequiz.logging_config import get_logger, log_with_context

logger = get_logger("db")

SEARCHABLE_FIELDS = ("id", "student_id", "course_id", "lesson_id", "status")
SORTABLE_FIELDS = ("created_at", "completed_at", "attempt_number", "score",
                   "correct_answers", "time_spent")

OrderBy = list[tuple[str, str]]


class DuplicateAttempt(Exception):
    """Insert collided with an existing attempt slot (open attempt or attempt number)."""


class AttemptStore(ABC):
    """Persistence interface for quiz attempts."""

    @abstractmethod
    def find_one(self, criteria: dict, order_by: Optional[OrderBy] = None) -> Optional[QuizAttempt]:
        """First attempt matching every criterion, in the given order."""

    @abstractmethod
    def find_all(self, criteria: dict, order_by: Optional[OrderBy] = None) -> list[QuizAttempt]:
        """All attempts matching every criterion, in the given order."""

    @abstractmethod
    def count(self, criteria: dict) -> int:
        """Number of attempts matching every criterion."""

    @abstractmethod
    def insert(self, attempt: QuizAttempt) -> QuizAttempt:
        """Persist a new attempt. Raises DuplicateAttempt on a uniqueness clash."""

    @abstractmethod
    def update(self, attempt: QuizAttempt) -> QuizAttempt:
        """Persist every pending change on an attempt as one unit."""


class SqlAlchemyAttemptStore(AttemptStore):
    """AttemptStore backed by a SQLAlchemy session; one commit per write."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _query(self, criteria: dict, order_by: Optional[OrderBy] = None):
        query = self.db.query(QuizAttempt)
        for field, value in criteria.items():
            if field not in SEARCHABLE_FIELDS:
                raise ValueError("Unsupported attempt filter: {}".format(field))
            query = query.filter(getattr(QuizAttempt, field) == value)
        for field, direction in order_by or []:
            if field not in SORTABLE_FIELDS:
                raise ValueError("Unsupported attempt ordering: {}".format(field))
            column = getattr(QuizAttempt, field)
            query = query.order_by(column.desc() if direction == "desc" else column.asc())
        return query

    def find_one(self, criteria, order_by=None):
        return self._query(criteria, order_by).first()

    def find_all(self, criteria, order_by=None):
        return self._query(criteria, order_by).all()

    def count(self, criteria):
        return self._query(criteria).count()

    def insert(self, attempt):
        start_time = time.time()
        self.db.add(attempt)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            log_with_context(logger, "WARNING",
                "Attempt insert rejected by uniqueness guard",
                context={"student_id": attempt.student_id, "lesson_id": attempt.lesson_id},
                extra_data={"attempt_number": attempt.attempt_number, "error": str(exc.orig)})
            raise DuplicateAttempt(str(exc.orig)) from exc
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(attempt)

        log_with_context(logger, "DEBUG", "Inserted attempt {}".format(attempt.id),
            context={"attempt_id": attempt.id},
            extra_data={"duration_ms": round((time.time() - start_time) * 1000, 2)})
        return attempt

    def update(self, attempt):
        start_time = time.time()
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            log_with_context(logger, "ERROR", "Failed to update attempt {}".format(attempt.id),
                context={"attempt_id": attempt.id})
            raise
        self.db.refresh(attempt)

        log_with_context(logger, "DEBUG", "Updated attempt {}".format(attempt.id),
            context={"attempt_id": attempt.id},
            extra_data={"duration_ms": round((time.time() - start_time) * 1000, 2)})
        return attempt
