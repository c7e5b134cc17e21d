from coursequiz.models.quiz_attempt import AttemptStatus
from coursequiz.services.reporting import lesson_report

from conftest import auth_headers


def test_report_ranks_best_attempt_per_student(store, make_completed):
    make_completed(student_id="alice", score=60, correct_answers=6, time_spent=100)
    alice_best = make_completed(student_id="alice", score=90, correct_answers=9, time_spent=200)
    bob_best = make_completed(student_id="bob", score=90, correct_answers=9, time_spent=150)
    carol = make_completed(student_id="carol", score=100, correct_answers=10, time_spent=300)
    make_completed(student_id="dave", score=100, correct_answers=10, status=AttemptStatus.ABANDONED)
    make_completed(student_id="erin", score=100, correct_answers=10, lesson_id="lesson-2")

    report = lesson_report(store, "lesson-1")

    assert [row["attemptId"] for row in report] == [carol.id, bob_best.id, alice_best.id]
    assert [row["rank"] for row in report] == [1, 2, 3]
    assert report[2]["attempts"] == 2
    assert report[0]["passed"] is True
    assert report[0]["totalQuestions"] == 10


def test_report_is_empty_without_completed_attempts(store, manager):
    manager.start("student-1", "course-1", "lesson-1", 4)
    assert lesson_report(store, "lesson-1") == []


def test_report_route_requires_instructor(client, student_headers):
    response = client.get("/api/instructor/lessons/lesson-1/quiz-report", headers=student_headers)
    assert response.status_code == 403
    assert response.json()["success"] is False


def test_report_route_for_instructor(client, student_headers):
    started = client.post("/api/quiz/start", headers=student_headers, json={
        "courseId": "course-1", "lessonId": "lesson-1", "totalQuestions": 2,
    }).json()["data"]
    client.post("/api/quiz/answer", headers=student_headers, json={
        "attemptId": started["id"], "questionIndex": 0, "selectedAnswer": 1, "isCorrect": True,
    })
    client.post("/api/quiz/complete", headers=student_headers, json={"attemptId": started["id"]})

    response = client.get("/api/instructor/lessons/lesson-1/quiz-report",
                          headers=auth_headers("instructor-1", roles=("instructor",)))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["lessonId"] == "lesson-1"
    assert len(data["report"]) == 1
    row = data["report"][0]
    assert row["studentId"] == "student-1"
    assert row["score"] == 50
    assert row["passed"] is False
    assert row["attempts"] == 1
