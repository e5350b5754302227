from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query, Session

from grammar_quiz.auth import issue_session_token
from grammar_quiz.config import settings
from grammar_quiz.database import Base, SessionLocal, engine
from grammar_quiz.errors import GenerationError
from grammar_quiz.main import app, get_question_generator
from grammar_quiz.models import GrammarQuestion, QuizSession, UserAnswer, UserProfile
from grammar_quiz.schemas import QuestionPayload


class MockGenerator:
    def __init__(self, correct_answers=("B", "A")):
        self.correct_answers = correct_answers
        self.calls = []

    def generate_questions(self, **kwargs):
        self.calls.append(kwargs)
        return [
            QuestionPayload(
                question_text=f"Sentence {idx} with a _____.",
                option_a="a",
                option_b="an",
                option_c="the",
                option_d="no article",
                correct_answer=answer,
                explanation=f"Explanation {idx}.",
                grammar_type=kwargs["grammar_type"],
                difficulty_level=kwargs["difficulty_level"],
            )
            for idx, answer in enumerate(self.correct_answers)
        ]


class FailingGenerator:
    def generate_questions(self, **kwargs):
        raise GenerationError("Could not extract a JSON array from the model output")


def setup_module():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _client_for(user_id: str, email: str | None = None) -> TestClient:
    token = issue_session_token(user_id, email or f"{user_id}@example.com")
    return TestClient(app, cookies={settings.session_cookie_name: token})


def _seed_questions(count: int, grammar_type: str, difficulty_level: str = "beginner"):
    with SessionLocal() as db:
        rows = [
            GrammarQuestion(
                question_text=f"{grammar_type} question {idx} _____.",
                option_a="one",
                option_b="two",
                option_c="three",
                option_d="four",
                correct_answer="A",
                explanation="Because.",
                grammar_type=grammar_type,
                difficulty_level=difficulty_level,
            )
            for idx in range(count)
        ]
        db.add_all(rows)
        db.commit()
        return [{"id": row.id, "correct_answer": row.correct_answer} for row in rows]


def _submit(client: TestClient, grammar_type: str, questions, correct: int, answers=None, difficulty="beginner"):
    total = len(questions)
    return client.post(
        "/api/quiz-results",
        json={
            "grammarType": grammar_type,
            "difficultyLevel": difficulty,
            "questions": questions,
            "answers": answers or {},
            "score": {"correct": correct, "total": total, "percentage": round(correct / total * 100)},
        },
    )


def test_health_endpoint():
    client = TestClient(app)
    health = client.get("/api/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"


def test_generated_questions_round_trip_through_list_endpoint(monkeypatch):
    generator = MockGenerator()
    monkeypatch.setitem(app.dependency_overrides, get_question_generator, lambda: generator)
    client = TestClient(app)

    gen = client.post(
        "/api/generate-questions",
        json={"grammarType": "Articles", "difficultyLevel": "intermediate", "count": 2},
    )
    assert gen.status_code == 200
    generated = gen.json()
    assert generated["success"] is True
    assert generated["count"] == 2
    assert all(q["id"] > 0 for q in generated["questions"])
    assert generator.calls == [{"grammar_type": "Articles", "difficulty_level": "intermediate", "count": 2}]

    listed = client.get("/api/questions", params={"grammarType": "Articles", "difficultyLevel": "intermediate"})
    assert listed.status_code == 200
    payload = listed.json()
    assert payload["count"] == 2
    by_id = {q["id"]: q for q in payload["questions"]}
    for question in generated["questions"]:
        assert by_id[question["id"]] == question


def test_generate_defaults_to_five_questions(monkeypatch):
    generator = MockGenerator(correct_answers=("A",))
    monkeypatch.setitem(app.dependency_overrides, get_question_generator, lambda: generator)
    client = TestClient(app)

    response = client.post("/api/generate-questions", json={"grammarType": "Prepositions", "difficultyLevel": "beginner"})
    assert response.status_code == 200
    assert generator.calls[0]["count"] == 5


def test_generate_rejects_invalid_input(monkeypatch):
    monkeypatch.setitem(app.dependency_overrides, get_question_generator, lambda: MockGenerator())
    client = TestClient(app)

    bad_level = client.post("/api/generate-questions", json={"grammarType": "Articles", "difficultyLevel": "expert"})
    assert bad_level.status_code == 400
    assert bad_level.json()["success"] is False

    too_many = client.post(
        "/api/generate-questions",
        json={"grammarType": "Articles", "difficultyLevel": "beginner", "count": 11},
    )
    assert too_many.status_code == 400

    blank_type = client.post("/api/generate-questions", json={"grammarType": "   ", "difficultyLevel": "beginner"})
    assert blank_type.status_code == 400
    assert blank_type.json() == {"success": False, "error": "Grammar type and difficulty level are required"}


def test_generation_error_is_reported_as_server_error(monkeypatch):
    monkeypatch.setitem(app.dependency_overrides, get_question_generator, lambda: FailingGenerator())
    client = TestClient(app)

    response = client.post("/api/generate-questions", json={"grammarType": "Tense", "difficultyLevel": "advanced"})
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert "JSON array" in body["error"]


def test_authenticated_endpoints_reject_missing_or_bad_session():
    anonymous = TestClient(app)
    for method, path in [
        ("GET", "/api/performance"),
        ("GET", "/api/admin/stats"),
        ("GET", "/api/admin/users"),
        ("GET", "/api/admin/questions"),
    ]:
        response = anonymous.request(method, path)
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}

    forged = TestClient(app, cookies={settings.session_cookie_name: "not-a-token"})
    assert forged.get("/api/performance").status_code == 401

    expired = TestClient(
        app,
        cookies={
            settings.session_cookie_name: issue_session_token("u-expired", "x@example.com", timedelta(seconds=-5))
        },
    )
    assert expired.get("/api/performance").status_code == 401


def test_quiz_results_record_unanswered_questions_as_a():
    questions = _seed_questions(3, "Relative Clauses")
    questions[0]["correct_answer"] = "B"
    client = _client_for("user-unanswered")

    response = _submit(client, "Relative Clauses", questions, correct=1, answers={"0": "B"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["answersSaved"] is True

    with SessionLocal() as db:
        session = db.get(QuizSession, body["sessionId"])
        assert session.user_id == "user-unanswered"
        assert session.total_questions == 3
        assert session.score_percentage == 33

        rows = {
            row.question_id: row
            for row in db.query(UserAnswer).filter(UserAnswer.user_id == "user-unanswered").all()
        }
        assert rows[questions[0]["id"]].selected_answer == "B"
        assert rows[questions[0]["id"]].is_correct is True
        for question in questions[1:]:
            assert rows[question["id"]].selected_answer == "A"
            # Skipped, so never counted as correct even though "A" is the right option
            assert rows[question["id"]].is_correct is False

        profile = db.get(UserProfile, "user-unanswered")
        assert profile.email == "user-unanswered@example.com"


def test_resubmitting_a_question_overwrites_the_previous_answer():
    questions = _seed_questions(1, "Gerunds and Infinitives")
    client = _client_for("user-resubmit")

    assert _submit(client, "Gerunds and Infinitives", questions, correct=1, answers={"0": "A"}).status_code == 200
    assert _submit(client, "Gerunds and Infinitives", questions, correct=0, answers={"0": "C"}).status_code == 200

    with SessionLocal() as db:
        rows = db.query(UserAnswer).filter(UserAnswer.user_id == "user-resubmit").all()
        assert len(rows) == 1
        assert rows[0].selected_answer == "C"
        assert rows[0].is_correct is False
        assert db.query(QuizSession).filter(QuizSession.user_id == "user-resubmit").count() == 2


def test_quiz_results_require_at_least_one_question():
    client = _client_for("user-empty")
    response = client.post(
        "/api/quiz-results",
        json={
            "grammarType": "Articles",
            "difficultyLevel": "beginner",
            "questions": [],
            "answers": {},
            "score": {"correct": 0, "total": 0, "percentage": 0},
        },
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_performance_aggregates_sessions_by_topic_and_difficulty():
    articles = _seed_questions(10, "Perf Articles")
    tense = _seed_questions(10, "Perf Tense")
    client = _client_for("user-performance")

    assert _submit(client, "Articles", articles, correct=8).status_code == 200
    assert _submit(client, "Articles", articles, correct=6, difficulty="intermediate").status_code == 200
    assert _submit(client, "Tense", tense, correct=9).status_code == 200

    response = client.get("/api/performance")
    assert response.status_code == 200
    stats = response.json()["stats"]

    assert stats["totalQuizzes"] == 3
    assert stats["totalQuestions"] == 30
    assert stats["averageScore"] == 77

    by_type = {row["grammar_type"]: row for row in stats["grammarTypeStats"]}
    assert by_type["Articles"]["average_score"] == 70
    assert by_type["Articles"]["total_quizzes"] == 2
    assert by_type["Tense"]["average_score"] == 90

    by_level = {row["difficulty_level"]: row for row in stats["difficultyStats"]}
    assert by_level["beginner"]["average_score"] == 85
    assert by_level["intermediate"]["average_score"] == 60

    assert [row["grammar_type"] for row in stats["weakAreas"]] == ["Articles", "Tense"]
    assert [row["score"] for row in stats["recentProgress"]] == [90, 60, 80]
    assert stats["recentProgress"][0]["difficulty"] == "beginner"


def test_performance_for_user_without_sessions_is_empty():
    response = _client_for("user-new").get("/api/performance")
    assert response.status_code == 200
    stats = response.json()["stats"]
    assert stats["totalQuizzes"] == 0
    assert stats["averageScore"] == 0
    assert stats["weakAreas"] == []
    assert stats["recentProgress"] == []


def test_admin_question_pagination_and_delete():
    seeded = _seed_questions(5, "Admin Modal Verbs", "advanced")
    client = _client_for("admin-questions")

    page = client.get("/api/admin/questions", params={"page": 2, "limit": 2, "grammarType": "Admin Modal Verbs"})
    assert page.status_code == 200
    body = page.json()
    assert body["totalCount"] == 5
    assert body["totalPages"] == 3
    assert body["currentPage"] == 2
    assert len(body["questions"]) == 2

    deleted = client.request("DELETE", "/api/admin/questions", json={"questionId": seeded[0]["id"]})
    assert deleted.status_code == 200
    assert deleted.json() == {"success": True}

    after = client.get("/api/admin/questions", params={"grammarType": "Admin Modal Verbs"}).json()
    assert after["totalCount"] == 4
    assert seeded[0]["id"] not in {q["id"] for q in after["questions"]}


def test_deleting_a_question_removes_its_answers():
    questions = _seed_questions(1, "Admin Cascade")
    client = _client_for("admin-cascade")
    assert _submit(client, "Admin Cascade", questions, correct=1, answers={"0": "A"}).status_code == 200

    response = client.request("DELETE", "/api/admin/questions", json={"questionId": questions[0]["id"]})
    assert response.status_code == 200

    with SessionLocal() as db:
        assert db.query(UserAnswer).filter(UserAnswer.question_id == questions[0]["id"]).count() == 0


def test_admin_stats_report_counts_distributions_and_activity():
    _seed_questions(3, "Stats Passive Voice", "intermediate")
    questions = _seed_questions(2, "Stats Conditionals", "advanced")
    client = _client_for("admin-stats", "admin-stats@example.com")
    assert _submit(client, "Stats Conditionals", questions, correct=2, difficulty="advanced").status_code == 200

    response = client.get("/api/admin/stats")
    assert response.status_code == 200
    stats = response.json()["stats"]

    with SessionLocal() as db:
        assert stats["totalUsers"] == db.query(UserProfile).count()
        assert stats["totalQuestions"] == db.query(GrammarQuestion).count()
        assert stats["totalSessions"] == db.query(QuizSession).count()

    assert stats["grammarTypeStats"]["Stats Passive Voice"] == 3
    assert stats["grammarTypeStats"]["Stats Conditionals"] == 2
    assert sum(stats["difficultyStats"].values()) == stats["totalQuestions"]
    assert len(stats["recentActivity"]) <= 10
    latest = stats["recentActivity"][0]
    assert latest["email"] == "admin-stats@example.com"
    assert latest["score_percentage"] == 100


def test_admin_users_include_session_stats():
    questions = _seed_questions(4, "Users Future Tense")
    client = _client_for("admin-users-active")
    assert _submit(client, "Users Future Tense", questions, correct=2).status_code == 200
    assert _submit(client, "Users Future Tense", questions, correct=3).status_code == 200

    with SessionLocal() as db:
        db.add(UserProfile(id="admin-users-idle", email="idle@example.com"))
        db.commit()

    response = client.get("/api/admin/users")
    assert response.status_code == 200
    users = {u["id"]: u for u in response.json()["users"]}

    active = users["admin-users-active"]
    assert active["totalSessions"] == 2
    assert active["averageScore"] == 63
    assert active["lastActivity"] is not None

    idle = users["admin-users-idle"]
    assert idle["totalSessions"] == 0
    assert idle["averageScore"] == 0
    assert idle["lastActivity"] == idle["created_at"]


def test_failed_answer_upsert_keeps_the_saved_session(monkeypatch):
    questions = _seed_questions(2, "Best Effort Answers")
    client = _client_for("user-answers-fail")

    def failing_merge(self, instance, *args, **kwargs):
        raise OperationalError("INSERT INTO user_answers", {}, Exception("database is locked"))

    monkeypatch.setattr(Session, "merge", failing_merge)
    response = _submit(client, "Best Effort Answers", questions, correct=1, answers={"0": "A"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["answersSaved"] is False

    with SessionLocal() as db:
        assert db.query(QuizSession).filter(QuizSession.user_id == "user-answers-fail").count() == 1
        assert db.query(UserAnswer).filter(UserAnswer.user_id == "user-answers-fail").count() == 0


def test_failed_session_insert_returns_error_envelope(monkeypatch):
    questions = _seed_questions(1, "Session Insert Failure")
    client = _client_for("user-session-fail")
    original_add = Session.add

    def add(self, instance, *args, **kwargs):
        if isinstance(instance, QuizSession):
            raise OperationalError("INSERT INTO quiz_sessions", {}, Exception("disk I/O error"))
        return original_add(self, instance, *args, **kwargs)

    monkeypatch.setattr(Session, "add", add)
    response = _submit(client, "Session Insert Failure", questions, correct=1)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to save quiz session"}
    monkeypatch.undo()

    with SessionLocal() as db:
        assert db.query(QuizSession).filter(QuizSession.user_id == "user-session-fail").count() == 0


def test_failed_performance_read_returns_error_envelope(monkeypatch):
    client = _client_for("user-read-fail")

    def failing_all(self):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(Query, "all", failing_all)
    response = client.get("/api/performance")

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to fetch performance data"}


def test_routing_errors_use_the_error_envelope():
    client = TestClient(app)

    wrong_method = client.put("/api/admin/questions", json={})
    assert wrong_method.status_code == 405
    assert wrong_method.json()["success"] is False
    assert wrong_method.json()["error"] == "Method Not Allowed"

    unknown = client.get("/api/does-not-exist")
    assert unknown.status_code == 404
    assert unknown.json() == {"success": False, "error": "Not Found"}


def test_blank_answers_are_recorded_as_unanswered():
    questions = _seed_questions(2, "Blank Answers")
    client = _client_for("user-blank-answer")

    response = _submit(client, "Blank Answers", questions, correct=1, answers={"0": "", "1": "A"})
    assert response.status_code == 200

    with SessionLocal() as db:
        rows = {
            row.question_id: row
            for row in db.query(UserAnswer).filter(UserAnswer.user_id == "user-blank-answer").all()
        }
    assert rows[questions[0]["id"]].selected_answer == "A"
    assert rows[questions[0]["id"]].is_correct is False
    assert rows[questions[1]["id"]].is_correct is True
