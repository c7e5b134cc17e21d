"""
Quiz Attempt Manager - owns the lifecycle of a student's quiz attempt.

State machine:
    start()            -> in_progress  (or resume the open attempt)
    submit_answer()    -> in_progress  (repeatable, replaces per question)
    complete()         -> completed    (terminal, results recomputed)
    abandon()          -> abandoned    (terminal, results frozen)

Operations that act on an attempt look it up by id, owner AND
status=in_progress. A terminal attempt therefore reads as NotFound, which
is what blocks answers after completion.

Correctness of each answer is decided by the caller and trusted here.
"""

import json
import time
from typing import Callable, Optional

from coursequiz.config import PASSING_THRESHOLD
from coursequiz.errors import BadRequest, Conflict, Forbidden, NotFound
from coursequiz.models.quiz_attempt import (
    QuizAttempt, AttemptStatus, active_key_for, utcnow
)
from coursequiz.services.attempt_store import AttemptStore, DuplicateAttempt
from coursequiz.services.scoring import (
    apply_results, get_progress, get_results, round_ratio
)
from coursequiz.logging_config import get_logger, log_with_context

logger = get_logger("attempts")

NOT_FOUND_MESSAGE = "Quiz attempt not found or already completed"
RETAKE_FORBIDDEN_MESSAGE = "Quiz already completed and retakes are not allowed"
START_CONFLICT_MESSAGE = "Quiz attempt could not be started, please try again"


def _context(attempt: QuizAttempt) -> dict:
    return {
        "attempt_id": attempt.id,
        "student_id": attempt.student_id,
        "lesson_id": attempt.lesson_id,
    }


class QuizAttemptManager:
    """Quiz attempt lifecycle on top of an AttemptStore."""

    def __init__(self, store: AttemptStore, clock: Callable = utcnow,
                 passing_threshold: int = PASSING_THRESHOLD):
        self.store = store
        self.clock = clock
        self.passing_threshold = passing_threshold

    # ── lookups ──────────────────────────────────────────────

    def _find_by_status(self, student_id: str, lesson_id: str, status: AttemptStatus,
                        order_by=None) -> Optional[QuizAttempt]:
        return self.store.find_one(
            {"student_id": student_id, "lesson_id": lesson_id, "status": status},
            order_by=order_by,
        )

    def _require_open(self, attempt_id: str, student_id: str) -> QuizAttempt:
        if not attempt_id:
            raise BadRequest("Missing required field: attemptId")
        attempt = self.store.find_one({
            "id": attempt_id,
            "student_id": student_id,
            "status": AttemptStatus.IN_PROGRESS,
        })
        if attempt is None:
            raise NotFound(NOT_FOUND_MESSAGE)
        return attempt

    def can_take(self, student_id: str, lesson_id: str) -> dict:
        """
        Whether the student may begin or resume the lesson quiz.

        Only a completed attempt blocks; the allowRetakes flag is not
        consulted here, it is applied by start().
        """
        completed = self._find_by_status(student_id, lesson_id, AttemptStatus.COMPLETED,
                                         order_by=[("completed_at", "desc")])
        in_progress = self._find_by_status(student_id, lesson_id, AttemptStatus.IN_PROGRESS)
        return {
            "canTake": completed is None,
            "hasInProgress": in_progress is not None,
            "completedAttempt": completed,
            "inProgressAttempt": in_progress,
        }

    def get_current(self, student_id: str, lesson_id: str) -> Optional[dict]:
        attempt = self._find_by_status(student_id, lesson_id, AttemptStatus.IN_PROGRESS)
        if attempt is None:
            return None
        return {"attempt": attempt, "progress": get_progress(attempt), "results": get_results(attempt)}

    def get_latest_completed(self, student_id: str, lesson_id: str) -> Optional[dict]:
        attempt = self._find_by_status(student_id, lesson_id, AttemptStatus.COMPLETED,
                                       order_by=[("completed_at", "desc")])
        if attempt is None:
            return None
        return {"attempt": attempt, "results": get_results(attempt), "timeSpent": attempt.time_spent}

    def get_best_attempt(self, student_id: str, lesson_id: str) -> Optional[QuizAttempt]:
        """Completed attempt with the highest score, ties broken by correct answers."""
        return self._find_by_status(
            student_id, lesson_id, AttemptStatus.COMPLETED,
            order_by=[("score", "desc"), ("correct_answers", "desc")],
        )

    def get_history(self, student_id: str, lesson_id: str) -> list:
        """All attempts of any status, most recently created first."""
        return self.store.find_all(
            {"student_id": student_id, "lesson_id": lesson_id},
            order_by=[("created_at", "desc"), ("attempt_number", "desc")],
        )

    def get_history_summary(self, student_id: str, lesson_id: str) -> dict:
        attempts = self.get_history(student_id, lesson_id)
        return {
            "attempts": attempts,
            "bestAttempt": self.get_best_attempt(student_id, lesson_id),
            "totalAttempts": len(attempts),
            "completedAttempts": len([a for a in attempts if a.status == AttemptStatus.COMPLETED]),
        }

    def get_course_stats(self, student_id: str, course_id: str) -> dict:
        """Aggregate the student's completed attempts across a course."""
        attempts = self.store.find_all({
            "student_id": student_id,
            "course_id": course_id,
            "status": AttemptStatus.COMPLETED,
        })
        scores = [a.score or 0 for a in attempts]
        return {
            "totalAttempts": len(attempts),
            "passedAttempts": len([a for a in attempts if a.passed]),
            "averageScore": round_ratio(sum(scores), len(scores)),
            "bestScore": max(scores) if scores else 0,
            "totalTimeSpent": sum(a.time_spent or 0 for a in attempts),
        }

    # ── transitions ──────────────────────────────────────────

    def start(self, student_id: str, course_id: str, lesson_id: str,
              total_questions: int, allow_retakes: bool = False,
              metadata: Optional[dict] = None) -> tuple:
        """
        Start a new attempt or resume the open one.

        Returns:
            (attempt, resumed) where resumed is True when an existing
            in-progress attempt was returned unchanged.
        """
        if not course_id or not lesson_id or not total_questions:
            raise BadRequest("Missing required fields: courseId, lessonId, totalQuestions")
        if total_questions < 0:
            raise BadRequest("totalQuestions must be a positive integer")

        if not allow_retakes:
            completed = self._find_by_status(student_id, lesson_id, AttemptStatus.COMPLETED)
            if completed is not None:
                log_with_context(logger, "WARNING", "Retake refused for lesson {}".format(lesson_id),
                    context={"student_id": student_id, "lesson_id": lesson_id,
                             "completed_attempt_id": completed.id})
                raise Forbidden(RETAKE_FORBIDDEN_MESSAGE)

        existing = self._find_by_status(student_id, lesson_id, AttemptStatus.IN_PROGRESS)
        if existing is not None:
            log_with_context(logger, "INFO", "Resumed attempt {}".format(existing.id),
                context=_context(existing))
            return existing, True

        now = self.clock()
        attempt_number = self.store.count({"student_id": student_id, "lesson_id": lesson_id}) + 1
        attempt = QuizAttempt(
            student_id=student_id,
            course_id=course_id,
            lesson_id=lesson_id,
            attempt_number=attempt_number,
            status=AttemptStatus.IN_PROGRESS,
            active_key=active_key_for(student_id, lesson_id),
            started_at=now,
            answers="[]",
            total_questions=total_questions,
            correct_answers=0,
            score=0,
            passed=False,
            passing_threshold=self.passing_threshold,
            created_at=now,
            updated_at=now,
        )
        if metadata:
            attempt.client_metadata = _dump_metadata(metadata)

        try:
            self.store.insert(attempt)
        except DuplicateAttempt:
            # A concurrent start won the open slot; hand back its attempt.
            winner = self._find_by_status(student_id, lesson_id, AttemptStatus.IN_PROGRESS)
            if winner is None:
                log_with_context(logger, "WARNING", "Start collided with another attempt, no open attempt to resume",
                    context={"student_id": student_id, "lesson_id": lesson_id},
                    extra_data={"attempt_number": attempt_number})
                raise Conflict(START_CONFLICT_MESSAGE)
            log_with_context(logger, "INFO", "Resumed attempt {} after concurrent start".format(winner.id),
                context=_context(winner))
            return winner, True

        log_with_context(logger, "INFO",
            "Started attempt {} (#{}) with {} questions".format(attempt.id, attempt_number, total_questions),
            context=_context(attempt),
            extra_data={"course_id": course_id, "allow_retakes": allow_retakes})
        return attempt, False

    def submit_answer(self, attempt_id: str, student_id: str, question_index: int,
                      selected_answer, is_correct: bool) -> dict:
        """Record (or replace) the answer to one question and rescore."""
        attempt = self._require_open(attempt_id, student_id)
        if question_index < 0 or question_index >= attempt.total_questions:
            raise BadRequest("questionIndex must be between 0 and {}".format(attempt.total_questions - 1))

        now = self.clock()
        answers = [a for a in attempt.answers_list if a.get("questionIndex") != question_index]
        answers.append({
            "questionIndex": question_index,
            "selectedAnswer": selected_answer,
            "isCorrect": bool(is_correct),
            "answeredAt": now.isoformat(),
        })
        attempt.answers_list = answers
        results = apply_results(attempt)
        attempt.updated_at = now
        self.store.update(attempt)

        log_with_context(logger, "INFO",
            "Answer recorded for question {} (correct={})".format(question_index, bool(is_correct)),
            context=_context(attempt),
            extra_data={"answered": len(answers), "score": results["score"]})
        return {"attempt": attempt, "progress": get_progress(attempt), "results": results}

    def complete(self, attempt_id: str, student_id: str) -> dict:
        """Finish the attempt, stamp the time spent and compute final results."""
        start_time = time.time()
        attempt = self._require_open(attempt_id, student_id)

        now = self.clock()
        time_spent = max(0, int((now - attempt.started_at).total_seconds()))
        attempt.time_spent = time_spent
        attempt.status = AttemptStatus.COMPLETED
        attempt.completed_at = now
        attempt.active_key = None
        results = apply_results(attempt)
        attempt.updated_at = now
        self.store.update(attempt)

        log_with_context(logger, "INFO",
            "Completed attempt {}: score {}% (passed={})".format(attempt.id, results["score"], results["passed"]),
            context=_context(attempt),
            extra_data={
                "correct_answers": results["correctAnswers"],
                "total_questions": results["totalQuestions"],
                "time_spent": time_spent,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            })
        return {"attempt": attempt, "results": results, "timeSpent": time_spent}

    def abandon(self, attempt_id: str, student_id: str) -> QuizAttempt:
        """Give up the attempt. Results stay as they were after the last answer."""
        attempt = self._require_open(attempt_id, student_id)

        now = self.clock()
        attempt.status = AttemptStatus.ABANDONED
        attempt.completed_at = now
        attempt.active_key = None
        attempt.updated_at = now
        self.store.update(attempt)

        log_with_context(logger, "INFO", "Abandoned attempt {}".format(attempt.id),
            context=_context(attempt),
            extra_data={"answered": len(attempt.answers_list), "score": attempt.score})
        return attempt


def _dump_metadata(metadata: dict) -> str:
    return json.dumps({k: v for k, v in metadata.items() if v is not None})
