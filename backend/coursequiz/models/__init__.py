from coursequiz.models.quiz_attempt import QuizAttempt, AttemptStatus

__all__ = ["QuizAttempt", "AttemptStatus"]
