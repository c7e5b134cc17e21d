"""
QuizAttempt model - one student's single try at one lesson's quiz.

Each attempt contains:
- The answers submitted so far as JSON, in submission order
- The derived results (correct answers, score, passed)
- Status tracking through the attempt lifecycle
- Client metadata captured when the attempt was started
"""

import enum
import hashlib
import json
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Text, DateTime, Integer, Boolean, String, Enum, Index, UniqueConstraint
)
from coursequiz.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores datetimes without offset)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AttemptStatus(str, enum.Enum):
    """
    Lifecycle of an attempt:
    - IN_PROGRESS: started, accepting answers (initial state)
    - COMPLETED: finished and scored (terminal)
    - ABANDONED: given up, results frozen at the last answer (terminal)
    """
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptStatus.IN_PROGRESS


def active_key_for(student_id: str, lesson_id: str) -> str:
    """Value of the uniqueness slot held by an in-progress attempt.

    Hashed from the JSON pair so ids containing separators cannot collide.
    """
    pair = json.dumps([student_id, lesson_id])
    return hashlib.sha256(pair.encode("utf-8")).hexdigest()


class QuizAttempt(Base):
    """
    SQLAlchemy model for the quiz_attempts table.

    `active_key` is set only while the attempt is in progress and cleared
    when it reaches a terminal status. Its unique constraint allows at most
    one open attempt per (student, lesson); NULLs never collide.
    """
    __tablename__ = "quiz_attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
                doc="Unique attempt identifier")
    student_id = Column(String(64), nullable=False,
                        doc="Student taking the quiz (owned by the auth service)")
    course_id = Column(String(64), nullable=False,
                       doc="Course the lesson belongs to")
    lesson_id = Column(String(64), nullable=False,
                       doc="Lesson whose quiz is being attempted")
    attempt_number = Column(Integer, nullable=False, default=1,
                            doc="1-based attempt counter per student and lesson")
    status = Column(Enum(AttemptStatus, name="attempt_status", native_enum=False, length=20,
                         create_constraint=True, values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=AttemptStatus.IN_PROGRESS,
                    doc="in_progress | completed | abandoned")
    active_key = Column(String(130), nullable=True,
                        doc="student:lesson while in progress, NULL once terminal")
    started_at = Column(DateTime, nullable=False, default=utcnow,
                        doc="When the attempt was created")
    completed_at = Column(DateTime, nullable=True,
                          doc="When the attempt left in_progress (completed or abandoned)")
    time_spent = Column(Integer, nullable=True,
                        doc="Seconds between start and completion; NULL until completed")
    answers = Column(Text, nullable=False, default="[]",
                     doc="Answers as JSON list: [{questionIndex, selectedAnswer, isCorrect, answeredAt}]")

    total_questions = Column(Integer, nullable=False,
                             doc="Number of questions in the quiz, fixed at creation")
    correct_answers = Column(Integer, nullable=False, default=0,
                             doc="Count of answers marked correct")
    score = Column(Integer, nullable=False, default=0,
                   doc="Percentage of questions answered correctly, rounded")
    passed = Column(Boolean, nullable=False, default=False,
                    doc="score >= passing_threshold")
    passing_threshold = Column(Integer, nullable=False, default=70,
                               doc="Percentage required to pass, fixed at creation")

    client_metadata = Column("metadata", Text, nullable=True,
                             doc="Client info captured at start as JSON: {userAgent, ipAddress}")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("student_id", "lesson_id", "attempt_number",
                         name="uq_quiz_attempts_student_lesson_number"),
        UniqueConstraint("active_key", name="uq_quiz_attempts_active_key"),
        Index("ix_quiz_attempts_student_lesson", "student_id", "lesson_id"),
        Index("ix_quiz_attempts_student_course", "student_id", "course_id"),
        Index("ix_quiz_attempts_lesson_status", "lesson_id", "status"),
    )

    @property
    def answers_list(self) -> list:
        """Parse answers JSON string to a list."""
        if isinstance(self.answers, list):
            return self.answers
        try:
            return json.loads(self.answers) if self.answers else []
        except (json.JSONDecodeError, TypeError):
            return []

    @answers_list.setter
    def answers_list(self, value: list):
        self.answers = json.dumps(value)

    @property
    def metadata_dict(self) -> dict:
        """Parse client metadata JSON string to dict."""
        if isinstance(self.client_metadata, dict):
            return self.client_metadata
        try:
            return json.loads(self.client_metadata) if self.client_metadata else {}
        except (json.JSONDecodeError, TypeError):
            return {}

    def __repr__(self):
        return (f"<QuizAttempt(id={self.id}, student={self.student_id}, lesson={self.lesson_id}, "
                f"number={self.attempt_number}, status='{self.status}')>")
