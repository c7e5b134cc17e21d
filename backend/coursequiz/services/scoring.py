"""
Scoring Service - derives quiz results and progress from submitted answers.

Implements the results formula:
1. correct_answers = number of answers marked correct
2. score = round(correct_answers / total_questions * 100)   (0 if no questions)
3. passed = score >= passing_threshold

Results are always derived from the answers list; nothing else writes them.
"""

from coursequiz.models.quiz_attempt import QuizAttempt


def round_ratio(numerator: int, denominator: int) -> int:
    """
    numerator / denominator rounded half up, 0 for an empty denominator.

    Integer arithmetic keeps 62.5 -> 63 exact, where float round() would
    use banker's rounding.
    """
    if denominator <= 0:
        return 0
    return (2 * numerator + denominator) // (2 * denominator)


def round_percentage(part: int, whole: int) -> int:
    """Percentage of `part` in `whole`, rounded half up."""
    return round_ratio(100 * part, whole)


def calculate_results(answers: list, total_questions: int, passing_threshold: int) -> dict:
    """
    Compute the results block for a list of answers.

    Args:
        answers: Answer dicts with an `isCorrect` flag
        total_questions: Number of questions in the quiz
        passing_threshold: Percentage required to pass

    Returns:
        Dict with totalQuestions, correctAnswers, score, passed, passingThreshold
    """
    correct_count = sum(1 for answer in answers if answer.get("isCorrect"))
    score = round_percentage(correct_count, total_questions)
    return {
        "totalQuestions": total_questions,
        "correctAnswers": correct_count,
        "score": score,
        "passed": score >= passing_threshold,
        "passingThreshold": passing_threshold,
    }


def apply_results(attempt: QuizAttempt) -> dict:
    """Recompute the results of an attempt from its answers and store them on it."""
    results = calculate_results(attempt.answers_list, attempt.total_questions,
                                attempt.passing_threshold)
    attempt.correct_answers = results["correctAnswers"]
    attempt.score = results["score"]
    attempt.passed = results["passed"]
    return results


def get_results(attempt: QuizAttempt) -> dict:
    """Results block as currently stored on the attempt (no recomputation)."""
    return {
        "totalQuestions": attempt.total_questions,
        "correctAnswers": attempt.correct_answers or 0,
        "score": attempt.score or 0,
        "passed": bool(attempt.passed),
        "passingThreshold": attempt.passing_threshold,
    }


def get_progress(attempt: QuizAttempt) -> dict:
    """How many questions have been answered so far."""
    answered = len(attempt.answers_list)
    total = attempt.total_questions
    return {
        "answered": answered,
        "total": total,
        "percentage": round_percentage(answered, total),
    }
