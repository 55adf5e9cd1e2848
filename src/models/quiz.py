from datetime import datetime
from typing import List, Optional

from beanie import Document, Insert, PydanticObjectId, Replace, Save, before_event
from pydantic import BaseModel, Field, model_validator

from src.models.enums import DIFFICULTY_POINTS, Difficulty, QuestionType, QuizDifficulty, QuizType


class Question(BaseModel):
    """Вопрос квиза, хранится внутри документа Quiz"""
    question_id: str
    question: str
    type: QuestionType
    difficulty: Difficulty
    category: str
    correct_answer: str
    incorrect_answers: List[str] = []
    all_answers: List[str] = []  # перемешанные варианты
    points: Optional[int] = None

    @model_validator(mode="after")
    def default_points(self):
        if self.points is None:
            self.points = DIFFICULTY_POINTS[self.difficulty]
        return self


class QuizOptions(BaseModel):
    show_correct_answers: bool = True
    randomize_questions: bool = False
    randomize_answers: bool = True
    allow_retake: bool = True


class QuizStats(BaseModel):
    total_attempts: int = 0
    average_score: int = 0
    highest_score: int = 0
    version: int = 0


class Quiz(Document):
    title: str
    description: Optional[str] = None
    category: str
    difficulty: QuizDifficulty = QuizDifficulty.MIXED
    type: QuizType = QuizType.MULTIPLE
    time_limit: int = Field(default=30, ge=1, le=180)  # minutes
    questions: List[Question] = []
    total_marks: int = 0
    created_by: PydanticObjectId
    is_active: bool = True
    tags: List[str] = []
    options: QuizOptions = Field(default_factory=QuizOptions)
    stats: QuizStats = Field(default_factory=QuizStats)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "quizzes"
        indexes = [
            [("created_by", 1), ("created_at", -1)],
            "category",
            "difficulty",
            "is_active",
        ]

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def time_limit_seconds(self) -> int:
        return self.time_limit * 60

    def compute_total_marks(self) -> int:
        return sum(question.points for question in self.questions)

    @before_event(Insert, Replace, Save)
    def refresh_total_marks(self):
        self.total_marks = self.compute_total_marks()
