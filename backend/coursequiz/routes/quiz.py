"""
Quiz API routes - student-facing quiz attempt lifecycle.

Provides endpoints for:
- Checking whether a lesson quiz can be taken
- Starting / resuming, answering, completing and abandoning attempts
- Reading the current, latest completed and historical attempts
- Per-course quiz statistics

Every response uses the envelope {"success": true, "data": ..., "message"?}.
Failures are rendered by the application's QuizError handler.
"""

import time
from typing import Optional, Union
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from coursequiz.auth import TokenData, get_current_user
from coursequiz.database import get_db
from coursequiz.models.quiz_attempt import QuizAttempt
from coursequiz.services.attempt_manager import QuizAttemptManager
from coursequiz.services.attempt_store import SqlAlchemyAttemptStore
from coursequiz.services.scoring import get_progress, get_results
from coursequiz.logging_config import get_logger, log_with_context

router = APIRouter(prefix="/api/quiz")
logger = get_logger("http")


# ── Pydantic schemas ─────────────────────────────────────────

class StartAttemptRequest(BaseModel):
    """Body for starting (or resuming) an attempt."""
    courseId: str = Field(..., min_length=1, max_length=64)
    lessonId: str = Field(..., min_length=1, max_length=64)
    totalQuestions: int = Field(..., gt=0, description="Number of questions in the lesson quiz")
    allowRetakes: bool = False


class SubmitAnswerRequest(BaseModel):
    """Body for answering one question. isCorrect is decided by the client."""
    attemptId: str = Field(..., min_length=1)
    questionIndex: int = Field(..., ge=0)
    selectedAnswer: Union[int, str] = Field(..., description="Option index, true/false or short answer text")
    isCorrect: bool


class AttemptActionRequest(BaseModel):
    """Body for complete / abandon."""
    attemptId: str = Field(..., min_length=1)


# ── Dependencies ─────────────────────────────────────────────

def get_attempt_store(db: Session = Depends(get_db)) -> SqlAlchemyAttemptStore:
    return SqlAlchemyAttemptStore(db)


def get_attempt_manager(store: SqlAlchemyAttemptStore = Depends(get_attempt_store)) -> QuizAttemptManager:
    return QuizAttemptManager(store)


# ── Serialization ────────────────────────────────────────────

def _iso(value):
    return value.isoformat() if value else None


def serialize_attempt(attempt: Optional[QuizAttempt]) -> Optional[dict]:
    """Serialize a QuizAttempt ORM object to a dict for API response."""
    if attempt is None:
        return None
    return {
        "id": str(attempt.id),
        "student": attempt.student_id,
        "course": attempt.course_id,
        "lesson": attempt.lesson_id,
        "attemptNumber": attempt.attempt_number,
        "status": attempt.status.value,
        "startedAt": _iso(attempt.started_at),
        "completedAt": _iso(attempt.completed_at),
        "timeSpent": attempt.time_spent,
        "answers": attempt.answers_list,
        "results": get_results(attempt),
        "metadata": attempt.metadata_dict,
        "createdAt": _iso(attempt.created_at),
        "updatedAt": _iso(attempt.updated_at),
    }


def _serialize_bundle(bundle: Optional[dict]) -> Optional[dict]:
    """Serialize a manager result dict whose `attempt` key holds an ORM object."""
    if bundle is None:
        return None
    return {**bundle, "attempt": serialize_attempt(bundle["attempt"])}


# ── Routes ───────────────────────────────────────────────────

@router.get("/can-take/{lesson_id}")
def can_take(lesson_id: str,
             user: TokenData = Depends(get_current_user),
             manager: QuizAttemptManager = Depends(get_attempt_manager)):
    """Tell the frontend whether the lesson quiz is available to this student."""
    status = manager.can_take(user.sub, lesson_id)
    completed = status["completedAttempt"]
    in_progress = status["inProgressAttempt"]
    return {
        "success": True,
        "data": {
            "canTake": status["canTake"],
            "hasInProgress": status["hasInProgress"],
            "completedAttempt": {
                "id": completed.id,
                "score": completed.score,
                "passed": completed.passed,
                "completedAt": _iso(completed.completed_at),
                "timeSpent": completed.time_spent,
            } if completed else None,
            "inProgressAttempt": {
                "id": in_progress.id,
                "startedAt": _iso(in_progress.started_at),
                "progress": get_progress(in_progress),
            } if in_progress else None,
        }
    }


@router.post("/start")
def start_attempt(body: StartAttemptRequest, request: Request,
                  user: TokenData = Depends(get_current_user),
                  manager: QuizAttemptManager = Depends(get_attempt_manager)):
    """Start a new quiz attempt, or resume the one already in progress."""
    start_time = time.time()
    attempt, resumed = manager.start(
        user.sub, body.courseId, body.lessonId, body.totalQuestions,
        allow_retakes=body.allowRetakes,
        metadata={
            "userAgent": request.headers.get("user-agent"),
            "ipAddress": request.client.host if request.client else None,
        },
    )

    log_with_context(logger, "INFO",
        "{} attempt {} for lesson {}".format("Resumed" if resumed else "Started", attempt.id, body.lessonId),
        context={"attempt_id": attempt.id, "student_id": user.sub},
        extra_data={"duration_ms": round((time.time() - start_time) * 1000, 2)})

    return {
        "success": True,
        "data": serialize_attempt(attempt),
        "message": "Resumed existing quiz attempt" if resumed else "Quiz attempt started successfully",
    }


@router.post("/answer")
def submit_answer(body: SubmitAnswerRequest,
                  user: TokenData = Depends(get_current_user),
                  manager: QuizAttemptManager = Depends(get_attempt_manager)):
    """Record the answer to one question; resubmitting replaces the earlier answer."""
    outcome = manager.submit_answer(body.attemptId, user.sub, body.questionIndex,
                                    body.selectedAnswer, body.isCorrect)
    return {
        "success": True,
        "data": _serialize_bundle(outcome),
        "message": "Answer submitted successfully",
    }


@router.post("/complete")
def complete_attempt(body: AttemptActionRequest,
                     user: TokenData = Depends(get_current_user),
                     manager: QuizAttemptManager = Depends(get_attempt_manager)):
    """Finish the attempt and return the final results."""
    outcome = manager.complete(body.attemptId, user.sub)
    return {
        "success": True,
        "data": _serialize_bundle(outcome),
        "message": "Quiz completed successfully",
    }


@router.post("/abandon")
def abandon_attempt(body: AttemptActionRequest,
                    user: TokenData = Depends(get_current_user),
                    manager: QuizAttemptManager = Depends(get_attempt_manager)):
    attempt = manager.abandon(body.attemptId, user.sub)
    return {
        "success": True,
        "data": serialize_attempt(attempt),
        "message": "Quiz attempt abandoned",
    }


@router.get("/current/{lesson_id}")
def current_attempt(lesson_id: str,
                    user: TokenData = Depends(get_current_user),
                    manager: QuizAttemptManager = Depends(get_attempt_manager)):
    current = manager.get_current(user.sub, lesson_id)
    if current is None:
        return {"success": True, "data": None, "message": "No active quiz attempt found"}
    return {"success": True, "data": _serialize_bundle(current)}


@router.get("/completed/{lesson_id}")
def completed_attempt(lesson_id: str,
                      user: TokenData = Depends(get_current_user),
                      manager: QuizAttemptManager = Depends(get_attempt_manager)):
    completed = manager.get_latest_completed(user.sub, lesson_id)
    if completed is None:
        return {"success": True, "data": None, "message": "No completed quiz attempt found"}
    return {"success": True, "data": _serialize_bundle(completed)}


@router.get("/history/{lesson_id}")
def attempt_history(lesson_id: str,
                    user: TokenData = Depends(get_current_user),
                    manager: QuizAttemptManager = Depends(get_attempt_manager)):
    """All attempts for the lesson, newest first, plus the best completed one."""
    summary = manager.get_history_summary(user.sub, lesson_id)
    return {
        "success": True,
        "data": {
            "attempts": [serialize_attempt(a) for a in summary["attempts"]],
            "bestAttempt": serialize_attempt(summary["bestAttempt"]),
            "totalAttempts": summary["totalAttempts"],
            "completedAttempts": summary["completedAttempts"],
        }
    }


@router.get("/stats/{course_id}")
def course_stats(course_id: str,
                 user: TokenData = Depends(get_current_user),
                 manager: QuizAttemptManager = Depends(get_attempt_manager)):
    return {"success": True, "data": manager.get_course_stats(user.sub, course_id)}
