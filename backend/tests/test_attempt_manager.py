import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from coursequiz.errors import BadRequest, Conflict, Forbidden, NotFound
from coursequiz.models.quiz_attempt import AttemptStatus
from coursequiz.services.attempt_manager import QuizAttemptManager
from coursequiz.services.attempt_store import DuplicateAttempt, SqlAlchemyAttemptStore


def start(manager, total_questions=4, allow_retakes=False, student="student-1", lesson="lesson-1"):
    attempt, _ = manager.start(student, "course-1", lesson, total_questions, allow_retakes=allow_retakes)
    return attempt


class TestStart:
    def test_creates_in_progress_attempt(self, manager, clock):
        attempt, resumed = manager.start("student-1", "course-1", "lesson-1", 4,
                                         metadata={"userAgent": "pytest", "ipAddress": None})

        assert resumed is False
        assert attempt.status == AttemptStatus.IN_PROGRESS
        assert attempt.attempt_number == 1
        assert attempt.started_at == clock()
        assert attempt.completed_at is None
        assert attempt.time_spent is None
        assert attempt.answers_list == []
        assert attempt.total_questions == 4
        assert attempt.correct_answers == 0
        assert attempt.score == 0
        assert attempt.passed is False
        assert attempt.passing_threshold == 70
        assert attempt.metadata_dict == {"userAgent": "pytest"}

    def test_second_start_resumes_same_attempt(self, manager):
        first, _ = manager.start("student-1", "course-1", "lesson-1", 4)
        second, resumed = manager.start("student-1", "course-1", "lesson-1", 4)

        assert resumed is True
        assert second.id == first.id
        assert len(manager.get_history("student-1", "lesson-1")) == 1

    def test_resume_ignores_new_question_count(self, manager):
        first = start(manager, total_questions=4)
        second = start(manager, total_questions=10)
        assert second.id == first.id
        assert second.total_questions == 4

    def test_completed_without_retakes_is_forbidden(self, manager):
        attempt = start(manager)
        manager.complete(attempt.id, "student-1")

        with pytest.raises(Forbidden, match="retakes are not allowed"):
            start(manager, allow_retakes=False)

    def test_retake_allowed_gets_next_attempt_number(self, manager):
        first = start(manager)
        manager.complete(first.id, "student-1")
        abandoned = start(manager, allow_retakes=True)
        manager.abandon(abandoned.id, "student-1")

        retake = start(manager, allow_retakes=True)

        assert retake.id not in (first.id, abandoned.id)
        assert retake.attempt_number == 3
        assert retake.status == AttemptStatus.IN_PROGRESS

    def test_abandoned_attempt_does_not_block_start(self, manager):
        attempt = start(manager)
        manager.abandon(attempt.id, "student-1")

        again = start(manager, allow_retakes=False)
        assert again.attempt_number == 2

    def test_passing_threshold_comes_from_manager(self, store, clock):
        manager = QuizAttemptManager(store, clock=clock, passing_threshold=80)
        assert start(manager).passing_threshold == 80

    @pytest.mark.parametrize("total_questions", [0, None, -3])
    def test_rejects_bad_question_count(self, manager, total_questions):
        with pytest.raises(BadRequest):
            manager.start("student-1", "course-1", "lesson-1", total_questions)

    def test_missing_lesson_is_bad_request(self, manager):
        with pytest.raises(BadRequest, match="Missing required fields"):
            manager.start("student-1", "course-1", "", 4)

    def test_concurrent_start_resumes_winner(self, db_session, clock):
        class StaleReadStore(SqlAlchemyAttemptStore):
            """Misses the open attempt once, like a request that read before the other wrote."""
            hide_open = False

            def find_one(self, criteria, order_by=None):
                if self.hide_open and criteria.get("status") == AttemptStatus.IN_PROGRESS:
                    self.hide_open = False
                    return None
                return super().find_one(criteria, order_by)

        store = StaleReadStore(db_session)
        manager = QuizAttemptManager(store, clock=clock)
        winner = start(manager)

        store.hide_open = True
        loser, resumed = manager.start("student-1", "course-1", "lesson-1", 4)

        assert resumed is True
        assert loser.id == winner.id
        assert store.count({"student_id": "student-1", "lesson_id": "lesson-1"}) == 1

    def test_colon_in_ids_does_not_share_open_slot(self, manager):
        first, first_resumed = manager.start("a:b", "course-1", "c", 4)
        second, second_resumed = manager.start("a", "course-1", "b:c", 4)

        assert first_resumed is False
        assert second_resumed is False
        assert first.id != second.id
        assert first.active_key != second.active_key

    def test_collision_without_open_attempt_is_conflict(self, db_session, clock):
        class CollidingStore(SqlAlchemyAttemptStore):
            def insert(self, attempt):
                raise DuplicateAttempt("uq_quiz_attempts_student_lesson_number")

        manager = QuizAttemptManager(CollidingStore(db_session), clock=clock)

        with pytest.raises(Conflict, match="please try again"):
            start(manager)

    def test_status_column_rejects_unknown_values(self, manager, db_session):
        attempt = start(manager)

        with pytest.raises(IntegrityError):
            db_session.execute(text("UPDATE quiz_attempts SET status = 'paused' WHERE id = :id"),
                               {"id": attempt.id})
        db_session.rollback()


class TestSubmitAnswer:
    def test_records_answer_and_rescoring(self, manager, clock):
        attempt = start(manager)
        clock.advance(5)

        outcome = manager.submit_answer(attempt.id, "student-1", 0, 2, True)

        assert outcome["attempt"].answers_list == [{
            "questionIndex": 0,
            "selectedAnswer": 2,
            "isCorrect": True,
            "answeredAt": clock().isoformat(),
        }]
        assert outcome["progress"] == {"answered": 1, "total": 4, "percentage": 25}
        assert outcome["results"]["correctAnswers"] == 1
        assert outcome["results"]["score"] == 25
        assert outcome["results"]["passed"] is False

    def test_resubmitting_question_replaces_previous_answer(self, manager):
        attempt = start(manager)
        manager.submit_answer(attempt.id, "student-1", 0, 1, False)
        manager.submit_answer(attempt.id, "student-1", 1, "true", True)
        outcome = manager.submit_answer(attempt.id, "student-1", 0, 3, True)

        answers = outcome["attempt"].answers_list
        assert [a["questionIndex"] for a in answers] == [1, 0]
        assert [a for a in answers if a["questionIndex"] == 0] == [answers[1]]
        assert answers[1]["selectedAnswer"] == 3
        assert outcome["results"]["correctAnswers"] == 2
        assert outcome["progress"]["answered"] == 2

    def test_correct_answer_can_be_changed_to_wrong(self, manager):
        attempt = start(manager)
        manager.submit_answer(attempt.id, "student-1", 0, 1, True)
        outcome = manager.submit_answer(attempt.id, "student-1", 0, 2, False)
        assert outcome["results"]["correctAnswers"] == 0
        assert outcome["results"]["score"] == 0

    def test_short_answer_text_is_stored(self, manager):
        attempt = start(manager)
        outcome = manager.submit_answer(attempt.id, "student-1", 3, "photosynthesis", True)
        assert outcome["attempt"].answers_list[0]["selectedAnswer"] == "photosynthesis"

    def test_other_students_attempt_is_not_found(self, manager):
        attempt = start(manager)
        with pytest.raises(NotFound, match="not found or already completed"):
            manager.submit_answer(attempt.id, "student-2", 0, 1, True)

    def test_unknown_attempt_is_not_found(self, manager):
        with pytest.raises(NotFound):
            manager.submit_answer("no-such-attempt", "student-1", 0, 1, True)

    def test_question_index_out_of_range(self, manager):
        attempt = start(manager, total_questions=2)
        with pytest.raises(BadRequest):
            manager.submit_answer(attempt.id, "student-1", 2, 1, True)

    def test_late_answer_accepted_while_in_progress(self, manager, clock):
        attempt = start(manager)
        clock.advance(60 * 60 * 24)
        outcome = manager.submit_answer(attempt.id, "student-1", 0, 0, True)
        assert outcome["attempt"].status == AttemptStatus.IN_PROGRESS


class TestComplete:
    def test_four_question_quiz_with_three_correct_passes(self, manager, clock):
        attempt = start(manager, total_questions=4)
        for index, correct in enumerate([True, True, False, True]):
            manager.submit_answer(attempt.id, "student-1", index, index, correct)
        clock.advance(95.7)

        outcome = manager.complete(attempt.id, "student-1")

        assert outcome["results"] == {
            "totalQuestions": 4,
            "correctAnswers": 3,
            "score": 75,
            "passed": True,
            "passingThreshold": 70,
        }
        assert outcome["timeSpent"] == 95
        completed = outcome["attempt"]
        assert completed.status == AttemptStatus.COMPLETED
        assert completed.completed_at == clock()
        assert completed.time_spent == 95
        assert completed.active_key is None

    def test_unanswered_questions_count_against_score(self, manager):
        attempt = start(manager, total_questions=4)
        manager.submit_answer(attempt.id, "student-1", 0, 0, True)
        outcome = manager.complete(attempt.id, "student-1")
        assert outcome["results"]["score"] == 25
        assert outcome["results"]["passed"] is False

    def test_completed_attempt_is_terminal(self, manager):
        attempt = start(manager)
        manager.complete(attempt.id, "student-1")

        with pytest.raises(NotFound):
            manager.complete(attempt.id, "student-1")
        with pytest.raises(NotFound):
            manager.submit_answer(attempt.id, "student-1", 0, 1, True)
        with pytest.raises(NotFound):
            manager.abandon(attempt.id, "student-1")

    def test_other_student_cannot_complete(self, manager):
        attempt = start(manager)
        with pytest.raises(NotFound):
            manager.complete(attempt.id, "student-2")

    def test_missing_attempt_id_is_bad_request(self, manager):
        with pytest.raises(BadRequest):
            manager.complete("", "student-1")


class TestAbandon:
    def test_results_are_frozen_at_last_answer(self, manager, clock):
        attempt = start(manager, total_questions=4)
        manager.submit_answer(attempt.id, "student-1", 0, 1, True)
        manager.submit_answer(attempt.id, "student-1", 1, 0, False)
        clock.advance(30)

        abandoned = manager.abandon(attempt.id, "student-1")

        assert abandoned.status == AttemptStatus.ABANDONED
        assert abandoned.completed_at == clock()
        assert abandoned.time_spent is None
        assert abandoned.correct_answers == 1
        assert abandoned.score == 25
        assert abandoned.passed is False

    def test_abandoned_attempt_keeps_passed_flag(self, manager):
        attempt = start(manager, total_questions=2)
        manager.submit_answer(attempt.id, "student-1", 0, 1, True)
        manager.submit_answer(attempt.id, "student-1", 1, 1, True)

        abandoned = manager.abandon(attempt.id, "student-1")

        assert abandoned.passed is True

    def test_abandoned_attempt_cannot_be_completed(self, manager):
        attempt = start(manager)
        manager.abandon(attempt.id, "student-1")
        with pytest.raises(NotFound):
            manager.complete(attempt.id, "student-1")


class TestQueries:
    def test_can_take_fresh_lesson(self, manager):
        status = manager.can_take("student-1", "lesson-1")
        assert status == {
            "canTake": True,
            "hasInProgress": False,
            "completedAttempt": None,
            "inProgressAttempt": None,
        }

    def test_can_take_reports_in_progress(self, manager):
        attempt = start(manager)
        status = manager.can_take("student-1", "lesson-1")
        assert status["canTake"] is True
        assert status["hasInProgress"] is True
        assert status["inProgressAttempt"].id == attempt.id

    def test_can_take_false_after_completion_even_with_retakes(self, manager):
        first = start(manager)
        manager.complete(first.id, "student-1")
        start(manager, allow_retakes=True)

        status = manager.can_take("student-1", "lesson-1")

        assert status["canTake"] is False
        assert status["hasInProgress"] is True
        assert status["completedAttempt"].id == first.id

    def test_can_take_reports_most_recent_completion(self, manager, clock):
        first = start(manager)
        manager.complete(first.id, "student-1")
        clock.advance(300)
        second = start(manager, allow_retakes=True)
        clock.advance(60)
        manager.complete(second.id, "student-1")

        status = manager.can_take("student-1", "lesson-1")

        assert status["canTake"] is False
        assert status["hasInProgress"] is False
        assert status["completedAttempt"].id == second.id

    def test_best_attempt_breaks_ties_on_correct_answers(self, manager, make_completed):
        make_completed(score=60, correct_answers=6)
        make_completed(score=90, correct_answers=8)
        best = make_completed(score=90, correct_answers=9)

        result = manager.get_best_attempt("student-1", "lesson-1")

        assert result.id == best.id
        assert result.score == 90
        assert result.correct_answers == 9

    def test_best_attempt_ignores_abandoned(self, manager, make_completed):
        make_completed(score=100, correct_answers=10, status=AttemptStatus.ABANDONED)
        completed = make_completed(score=40, correct_answers=4)
        assert manager.get_best_attempt("student-1", "lesson-1").id == completed.id

    def test_best_attempt_none_without_completed(self, manager):
        start(manager)
        assert manager.get_best_attempt("student-1", "lesson-1") is None

    def test_history_is_newest_first(self, manager, clock):
        first = start(manager)
        manager.abandon(first.id, "student-1")
        clock.advance(10)
        second = start(manager)
        manager.complete(second.id, "student-1")
        clock.advance(10)
        third = start(manager, allow_retakes=True)

        history = manager.get_history("student-1", "lesson-1")

        assert [a.id for a in history] == [third.id, second.id, first.id]
        assert [a.status for a in history] == [
            AttemptStatus.IN_PROGRESS, AttemptStatus.COMPLETED, AttemptStatus.ABANDONED
        ]

    def test_history_summary_counts(self, manager):
        first = start(manager)
        manager.complete(first.id, "student-1")
        start(manager, allow_retakes=True)

        summary = manager.get_history_summary("student-1", "lesson-1")

        assert summary["totalAttempts"] == 2
        assert summary["completedAttempts"] == 1
        assert summary["bestAttempt"].id == first.id

    def test_history_is_scoped_to_student_and_lesson(self, manager):
        start(manager, student="student-1", lesson="lesson-1")
        start(manager, student="student-2", lesson="lesson-1")
        start(manager, student="student-1", lesson="lesson-2")
        assert len(manager.get_history("student-1", "lesson-1")) == 1

    def test_current_and_latest_completed(self, manager, clock):
        assert manager.get_current("student-1", "lesson-1") is None
        assert manager.get_latest_completed("student-1", "lesson-1") is None

        first = start(manager)
        current = manager.get_current("student-1", "lesson-1")
        assert current["attempt"].id == first.id
        assert current["progress"] == {"answered": 0, "total": 4, "percentage": 0}

        clock.advance(40)
        manager.complete(first.id, "student-1")
        clock.advance(100)
        second = start(manager, allow_retakes=True)
        clock.advance(20)
        manager.complete(second.id, "student-1")

        latest = manager.get_latest_completed("student-1", "lesson-1")
        assert latest["attempt"].id == second.id
        assert latest["timeSpent"] == 20
        assert latest["results"]["totalQuestions"] == 4

    def test_course_stats(self, manager, make_completed):
        make_completed(score=80, time_spent=100, lesson_id="lesson-1")
        make_completed(score=65, time_spent=50, lesson_id="lesson-2")
        make_completed(score=90, time_spent=30, lesson_id="lesson-3")
        make_completed(score=100, time_spent=10, lesson_id="lesson-4", status=AttemptStatus.ABANDONED)
        make_completed(score=100, time_spent=10, course_id="course-2")

        stats = manager.get_course_stats("student-1", "course-1")

        assert stats == {
            "totalAttempts": 3,
            "passedAttempts": 2,
            "averageScore": 78,
            "bestScore": 90,
            "totalTimeSpent": 180,
        }

    def test_course_stats_empty(self, manager):
        assert manager.get_course_stats("student-1", "course-1") == {
            "totalAttempts": 0,
            "passedAttempts": 0,
            "averageScore": 0,
            "bestScore": 0,
            "totalTimeSpent": 0,
        }
