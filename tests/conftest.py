from types import SimpleNamespace

import pytest

from src.models.enums import Difficulty, QuestionType
from src.models.quiz import Question


class FakeCursor:
    def __init__(self, rows):
        self.rows = list(rows)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for row in self.rows:
            yield row

    async def to_list(self, length=None):
        return self.rows if length is None else self.rows[:length]


class FakeCollection:
    """Запоминает вызовы motor-коллекции. modified - modified_count для update_one по очереди."""

    def __init__(self, modified=(), rows=(), documents=()):
        self.modified = list(modified)
        self.rows = rows
        self.documents = documents
        self.calls = []

    async def update_one(self, query, update, upsert=False):
        self.calls.append(("update_one", query, update))
        return SimpleNamespace(modified_count=self.modified.pop(0) if self.modified else 1)

    async def update_many(self, query, update):
        self.calls.append(("update_many", query, update))
        return SimpleNamespace(modified_count=0)

    async def delete_many(self, query):
        self.calls.append(("delete_many", query, None))
        return SimpleNamespace(deleted_count=0)

    async def bulk_write(self, operations, ordered=True):
        self.calls.append(("bulk_write", operations, None))

    def aggregate(self, pipeline, **kwargs):
        self.calls.append(("aggregate", pipeline, kwargs))
        return FakeCursor(self.rows)

    def find(self, query=None, projection=None):
        return FakeCursor(self.documents)


class FakeQuery:
    """Цепочка find().sort().skip().limit() поверх готового списка"""

    def __init__(self, items):
        self.items = items
        self.sorted_by = None

    def sort(self, *keys):
        self.sorted_by = keys
        return self

    def skip(self, n):
        return self

    def limit(self, n):
        return self

    async def count(self):
        return len(self.items)

    async def to_list(self):
        return self.items


@pytest.fixture
def make_question():
    def factory(question_id, difficulty=Difficulty.EASY, correct_answer="yes", **kwargs):
        return Question(
            question_id=question_id,
            question=kwargs.pop("question", f"Question {question_id}?"),
            type=kwargs.pop("type", QuestionType.MULTIPLE),
            difficulty=difficulty,
            category=kwargs.pop("category", "General Knowledge"),
            correct_answer=correct_answer,
            incorrect_answers=kwargs.pop("incorrect_answers", ["no"]),
            all_answers=kwargs.pop("all_answers", [correct_answer, "no"]),
            **kwargs,
        )
    return factory


@pytest.fixture
def mixed_questions(make_question):
    """Вопросы на 1, 2, 2 и 3 балла, всего 8"""
    return [
        make_question("q1", Difficulty.EASY, "A"),
        make_question("q2", Difficulty.MEDIUM, "B"),
        make_question("q3", Difficulty.MEDIUM, "C"),
        make_question("q4", Difficulty.HARD, "D"),
    ]
