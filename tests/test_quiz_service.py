from datetime import datetime
from types import SimpleNamespace

import pytest
from beanie import PydanticObjectId
from fastapi import HTTPException

from src.helpers.trivia import TriviaAPIError
from src.models.enums import Difficulty, QuestionType, SubmissionStatus
from src.models.quiz import Quiz, QuizOptions, QuizStats
from src.models.submission import AnswerRecord, Submission
from src.models.user import User
from src.schemas.req.quiz import AnswerSubmission, FeedbackDTO, QuizGenerateDTO, QuizSettingsDTO, QuizSubmitDTO
from src.schemas.res.submission import QuestionResult, SubmissionResult
from src.services import quiz as quiz_module
from src.services.leaderboard import LeaderboardService
from src.services.quiz import (
    QuizService,
    build_questions,
    hide_correct_answers,
    paginate,
    settings_update,
    submission_result,
)
from tests.conftest import FakeCollection, FakeQuery

TRIVIA_RESULTS = [
    {
        "type": "multiple",
        "difficulty": "hard",
        "category": "Science &amp; Nature",
        "question": "What is the chemical symbol for &quot;gold&quot;?",
        "correct_answer": "Au",
        "incorrect_answers": ["Ag", "Gd", "Go"],
    },
    {
        "type": "boolean",
        "difficulty": "easy",
        "category": "Science &amp; Nature",
        "question": "Water boils at 100&deg;C at sea level.",
        "correct_answer": "True",
        "incorrect_answers": ["False"],
    },
]


def keep_order(answers):
    return None


def test_build_questions_unescapes_and_scores():
    questions = build_questions(TRIVIA_RESULTS, shuffle=keep_order)

    first, second = questions
    assert first.question == 'What is the chemical symbol for "gold"?'
    assert first.category == "Science & Nature"
    assert first.type == QuestionType.MULTIPLE
    assert first.difficulty == Difficulty.HARD
    assert first.points == 3
    assert first.all_answers == ["Au", "Ag", "Gd", "Go"]
    assert second.question == "Water boils at 100°C at sea level."
    assert second.points == 1


def test_build_questions_assigns_unique_ids():
    questions = build_questions(TRIVIA_RESULTS * 3)

    ids = [q.question_id for q in questions]
    assert len(set(ids)) == len(ids)
    assert all(qid.startswith("q_") for qid in ids)


def test_build_questions_shuffles_answers():
    def reverse(answers):
        answers.reverse()

    question = build_questions(TRIVIA_RESULTS[:1], shuffle=reverse)[0]

    assert question.all_answers == ["Go", "Gd", "Ag", "Au"]
    assert question.correct_answer == "Au"


def test_explicit_points_are_kept(make_question):
    assert make_question("q1", Difficulty.HARD, points=10).points == 10


def test_submission_result_from_stored_submission():
    answers = [
        AnswerRecord(question_id="q1", user_answer="A", correct_answer="A", is_correct=True,
                     points=2, points_awarded=2),
        AnswerRecord(question_id="q2", correct_answer="B", is_correct=False, points=2, points_awarded=0),
    ]
    submission = SimpleNamespace(
        score=2, total_marks=4, percentage=50, correct_answers=1, incorrect_answers=0, skipped_answers=1,
        grade="D", performance="Below Average", time_taken=300, time_limit=600, answers=answers,
    )

    result = submission_result(submission)

    assert result.percentage == 50
    assert result.grade == "D"
    assert [q.question_id for q in result.per_question] == ["q1", "q2"]
    assert result.insights[0].startswith("You're on the right track")


async def test_trivia_failure_maps_to_bad_gateway(monkeypatch):
    service = QuizService()

    async def failing_fetch(*args, **kwargs):
        raise TriviaAPIError("Rate limit exceeded")

    monkeypatch.setattr(service.trivia, "fetch_questions", failing_fetch)
    quiz_data = QuizGenerateDTO(title="Science", category=17)

    with pytest.raises(HTTPException) as exc:
        await service.generate_quiz(quiz_data, None)
    assert exc.value.status_code == 502
    assert exc.value.detail == "Rate limit exceeded"


async def test_empty_trivia_result_is_rejected(monkeypatch):
    service = QuizService()

    async def no_questions(*args, **kwargs):
        return []

    monkeypatch.setattr(service.trivia, "fetch_questions", no_questions)

    with pytest.raises(HTTPException) as exc:
        await service.generate_quiz(QuizGenerateDTO(title="Science", category=17), None)
    assert exc.value.status_code == 400


class StoredSubmission(SimpleNamespace):
    async def insert(self):
        self.id = PydanticObjectId()


def stored_quiz(**overrides):
    fields = dict(
        id=PydanticObjectId(), title="Capitals", description=None, category="Geography", difficulty="mixed",
        total_questions=4, total_marks=8, time_limit=10, time_limit_seconds=600, stats=QuizStats(), tags=[],
        is_active=True, created_by=PydanticObjectId(), created_at=datetime(2024, 5, 1), options=QuizOptions(),
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def submit_env(monkeypatch, mixed_questions):
    """Сабмит без базы: каждый шаг после сохранения пишется в calls"""
    calls = []
    quiz = stored_quiz(questions=mixed_questions, compute_total_marks=lambda: 8)

    async def get_quiz(quiz_id):
        return quiz

    async def get_user(user_id):
        return SimpleNamespace(id=user_id)

    async def no_pending(match):
        return []

    async def stats(submission):
        calls.append(("stats", submission.id))

    async def leaderboard(self, submission):
        calls.append(("leaderboard", submission.id))

    async def achievements(user_id, submission):
        calls.append(("achievements", submission.id))
        return []

    monkeypatch.setattr(Quiz, "get", get_quiz)
    monkeypatch.setattr(User, "get", get_user)
    monkeypatch.setattr(quiz_module, "Submission", StoredSubmission)
    monkeypatch.setattr(quiz_module, "pending_submissions", no_pending)
    monkeypatch.setattr(quiz_module, "apply_submission_stats", stats)
    monkeypatch.setattr(LeaderboardService, "record_submission", leaderboard)
    monkeypatch.setattr(quiz_module, "award_achievements", achievements)
    return calls


def submit_data():
    return QuizSubmitDTO(
        answers=[
            AnswerSubmission(question_id="q1", answer="A"),
            AnswerSubmission(question_id="q2", answer="B"),
            AnswerSubmission(question_id="q3", answer="wrong"),
        ],
        time_taken=120,
    )


async def test_submit_updates_stats_then_leaderboard_then_achievements(submit_env):
    response = await QuizService().submit_quiz(PydanticObjectId(), PydanticObjectId(), submit_data())

    assert [step for step, _ in submit_env] == ["stats", "leaderboard", "achievements"]
    assert {submission_id for _, submission_id in submit_env} == {PydanticObjectId(response.submission_id)}
    assert response.result.score == 3
    assert response.result.percentage == 38
    assert response.stats_pending is False


async def test_submit_keeps_submission_when_stats_conflict(submit_env, monkeypatch):
    async def conflicting_stats(submission):
        submit_env.append(("stats", submission.id))
        raise HTTPException(status_code=409, detail="Concurrent update conflict on user stats, retry later")

    monkeypatch.setattr(quiz_module, "apply_submission_stats", conflicting_stats)

    response = await QuizService().submit_quiz(PydanticObjectId(), PydanticObjectId(), submit_data())

    assert response.stats_pending is True
    assert response.new_achievements == []
    assert response.submission_id
    assert [step for step, _ in submit_env] == ["stats"]


async def test_submit_applies_deferred_submissions_first(submit_env, monkeypatch):
    earlier = SimpleNamespace(id=PydanticObjectId())
    matches = []

    async def pending(match):
        matches.append(match)
        return [earlier]

    monkeypatch.setattr(quiz_module, "pending_submissions", pending)
    user_id = PydanticObjectId()

    response = await QuizService().submit_quiz(PydanticObjectId(), user_id, submit_data())

    new_id = PydanticObjectId(response.submission_id)
    assert submit_env == [
        ("stats", earlier.id), ("leaderboard", earlier.id),
        ("stats", new_id), ("leaderboard", new_id), ("achievements", new_id),
    ]
    assert matches == [{"user_id": user_id, "_id": {"$ne": new_id}}]


async def test_submission_status_follows_time_limit(submit_env, monkeypatch):
    stored = []

    class RecordedSubmission(StoredSubmission):
        async def insert(self):
            await super().insert()
            stored.append(self)

    monkeypatch.setattr(quiz_module, "Submission", RecordedSubmission)
    service = QuizService()

    await service.submit_quiz(PydanticObjectId(), PydanticObjectId(), submit_data())
    await service.submit_quiz(PydanticObjectId(), PydanticObjectId(),
                              submit_data().model_copy(update={"time_taken": 601}))

    assert [s.status for s in stored] == [SubmissionStatus.COMPLETED, SubmissionStatus.TIMEOUT]
    assert set(SubmissionStatus) == {SubmissionStatus.COMPLETED, SubmissionStatus.TIMEOUT}


async def test_feedback_is_written_only_once(monkeypatch):
    user_id, submission_id = PydanticObjectId(), PydanticObjectId()
    collection = FakeCollection(modified=[0])

    async def get_submission(document_id):
        return SimpleNamespace(id=document_id, user_id=user_id)

    monkeypatch.setattr(Submission, "get", get_submission)
    monkeypatch.setattr(Submission, "get_motor_collection", lambda: collection)

    with pytest.raises(HTTPException) as exc:
        await QuizService().add_submission_feedback(submission_id, user_id, FeedbackDTO(rating=4))
    assert exc.value.status_code == 400

    _, query, update = collection.calls[0]
    assert query == {"_id": submission_id, "feedback": None}
    assert update["$set"]["feedback"]["rating"] == 4


def test_settings_update_targets_options():
    update = settings_update(QuizSettingsDTO(allow_retake=False, time_limit=45, is_active=True))

    assert update == {"options.allow_retake": False, "time_limit": 45, "is_active": True}
    assert settings_update(QuizSettingsDTO()) == {}


def test_hidden_correct_answers():
    result = SubmissionResult(per_question=[
        QuestionResult(question_id="q1", user_answer="A", correct_answer="B", is_correct=False,
                       points=1, points_awarded=0),
    ])

    hidden = hide_correct_answers(result)

    assert hidden.per_question[0].correct_answer == ""
    assert hidden.per_question[0].user_answer == "A"
    assert result.per_question[0].correct_answer == "B"


def test_paginate():
    assert paginate(2, 10, 25) == {
        "page": 2, "limit": 10, "total_pages": 3, "has_next_page": True, "has_prev_page": True,
    }
    assert paginate(1, 10, 0)["has_next_page"] is False


async def test_only_creator_or_admin_changes_settings(monkeypatch):
    quiz = stored_quiz()
    collection = FakeCollection()

    async def get_quiz(quiz_id):
        return quiz

    monkeypatch.setattr(Quiz, "get", get_quiz)
    monkeypatch.setattr(Quiz, "get_motor_collection", lambda: collection)
    settings = QuizSettingsDTO(allow_retake=False)

    with pytest.raises(HTTPException) as exc:
        await QuizService().update_quiz_settings(quiz.id, PydanticObjectId(), False, settings)
    assert exc.value.status_code == 403

    result = await QuizService().update_quiz_settings(quiz.id, PydanticObjectId(), True, settings)

    assert result["quiz"]["id"] == str(quiz.id)
    assert collection.calls == [("update_one", {"_id": quiz.id}, {"$set": {"options.allow_retake": False}})]


async def test_empty_settings_update_is_rejected(monkeypatch):
    quiz = stored_quiz()

    async def get_quiz(quiz_id):
        return quiz

    monkeypatch.setattr(Quiz, "get", get_quiz)

    with pytest.raises(HTTPException) as exc:
        await QuizService().update_quiz_settings(quiz.id, quiz.created_by, False, QuizSettingsDTO())
    assert exc.value.status_code == 400


async def test_delete_deactivates_quiz(monkeypatch):
    quiz = stored_quiz()
    collection = FakeCollection()

    async def get_quiz(quiz_id):
        return quiz

    monkeypatch.setattr(Quiz, "get", get_quiz)
    monkeypatch.setattr(Quiz, "get_motor_collection", lambda: collection)

    await QuizService().delete_quiz(quiz.id, quiz.created_by, False)

    assert collection.calls == [("update_one", {"_id": quiz.id}, {"$set": {"is_active": False}})]


async def test_public_quizzes_filter_and_paginate(monkeypatch):
    queries = []

    def find(query):
        queries.append(query)
        return FakeQuery([stored_quiz()])

    monkeypatch.setattr(Quiz, "find", find)

    result = await QuizService().get_public_quizzes(page=1, limit=12, difficulty="all", search="c++")

    query = queries[0]
    assert query["is_active"] is True
    assert "difficulty" not in query
    assert query["$or"][0] == {"title": {"$regex": r"c\+\+", "$options": "i"}}
    assert result["total"] == 1
    assert result["quizzes"][0]["title"] == "Capitals"
    assert result["pagination"]["total_pages"] == 1


async def test_quiz_answers_follow_randomize_option(monkeypatch, mixed_questions):
    quiz = stored_quiz(questions=mixed_questions, options=QuizOptions(randomize_answers=False))

    async def get_quiz(quiz_id):
        return quiz

    monkeypatch.setattr(Quiz, "get", get_quiz)
    monkeypatch.setattr(quiz_module.random, "sample", lambda items, k: list(reversed(items)))

    payload = await QuizService().get_quiz(quiz.id)

    assert [q["answers"] for q in payload["questions"]] == [q.all_answers for q in mixed_questions]
    assert "correct_answer" not in payload["questions"][0]

    quiz.options = QuizOptions(randomize_answers=True)
    payload = await QuizService().get_quiz(quiz.id)

    assert payload["questions"][0]["answers"] == list(reversed(mixed_questions[0].all_answers))
