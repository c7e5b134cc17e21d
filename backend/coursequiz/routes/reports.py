"""
Instructor report route - ranked quiz results for a lesson.
"""

from fastapi import APIRouter, Depends

from coursequiz.auth import TokenData, require_roles
from coursequiz.routes.quiz import get_attempt_store
from coursequiz.services.attempt_store import SqlAlchemyAttemptStore
from coursequiz.services.reporting import lesson_report
from coursequiz.logging_config import get_logger, log_with_context

router = APIRouter(prefix="/api/instructor")
logger = get_logger("http")


@router.get("/lessons/{lesson_id}/quiz-report")
def get_lesson_quiz_report(lesson_id: str,
                           user: TokenData = Depends(require_roles("instructor", "admin")),
                           store: SqlAlchemyAttemptStore = Depends(get_attempt_store)):
    """Best completed attempt per student for the lesson, ranked."""
    report = lesson_report(store, lesson_id)

    log_with_context(logger, "INFO",
        "Quiz report generated: {} students for lesson {}".format(len(report), lesson_id),
        context={"user_id": user.sub},
        extra_data={"lesson_id": lesson_id, "entries": len(report)})

    return {"success": True, "data": {"lessonId": lesson_id, "report": report}}
