"""
Reporting Service - instructor view of quiz results for a lesson.

Ranks students by their best completed attempt using these criteria:
1. Score (highest first)
2. Correct answers (highest first, as tiebreaker)
3. Time spent (lowest first, as secondary tiebreaker)
"""

from coursequiz.models.quiz_attempt import QuizAttempt, AttemptStatus
from coursequiz.services.attempt_store import AttemptStore


def _rank_key(attempt: QuizAttempt) -> tuple:
    # Negate so a single ascending sort gives score DESC, correct DESC, time ASC
    return (-(attempt.score or 0), -(attempt.correct_answers or 0), attempt.time_spent or 0)


def lesson_report(store: AttemptStore, lesson_id: str) -> list:
    """
    Build the ranked per-student report for one lesson quiz.

    Students with no completed attempt are left out; their in-progress and
    abandoned attempts still count towards `attempts`.
    """
    attempts = store.find_all({"lesson_id": lesson_id}, order_by=[("created_at", "asc")])

    attempt_counts = {}
    best_attempts = {}
    for attempt in attempts:
        student_id = attempt.student_id
        attempt_counts[student_id] = attempt_counts.get(student_id, 0) + 1
        if attempt.status != AttemptStatus.COMPLETED:
            continue
        existing = best_attempts.get(student_id)
        if existing is None or _rank_key(attempt) < _rank_key(existing):
            best_attempts[student_id] = attempt

    ranked = sorted(best_attempts.values(), key=lambda a: (_rank_key(a), a.student_id))

    report = []
    for rank, attempt in enumerate(ranked, 1):
        report.append({
            "rank": rank,
            "studentId": attempt.student_id,
            "attemptId": attempt.id,
            "attemptNumber": attempt.attempt_number,
            "score": attempt.score,
            "correctAnswers": attempt.correct_answers,
            "totalQuestions": attempt.total_questions,
            "passed": bool(attempt.passed),
            "timeSpent": attempt.time_spent,
            "attempts": attempt_counts[attempt.student_id],
            "completedAt": attempt.completed_at.isoformat() if attempt.completed_at else None,
        })
    return report
