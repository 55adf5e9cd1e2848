from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from src.models.enums import QuizDifficulty, QuizType


class AnswerSubmission(BaseModel):
    question_id: str
    answer: str = ""
    time_spent: float = Field(default=0, ge=0)


class QuizSubmitDTO(BaseModel):
    answers: List[AnswerSubmission]
    time_taken: float = Field(gt=0)  # seconds
    start_time: Optional[datetime] = None


class QuizGenerateDTO(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: int  # id категории в trivia API
    amount: int = Field(default=10, ge=1, le=50)
    difficulty: QuizDifficulty = QuizDifficulty.MIXED
    type: QuizType = QuizType.MIXED
    time_limit: int = Field(default=30, ge=1, le=180)
    tags: List[str] = []


class FeedbackDTO(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str = Field(default="", max_length=500)


class HintRequest(BaseModel):
    question: str
    category: str
    difficulty: str
    correct_answer: str


class QuizSettingsDTO(BaseModel):
    """Изменяются только переданные поля"""
    show_correct_answers: Optional[bool] = None
    randomize_questions: Optional[bool] = None
    randomize_answers: Optional[bool] = None
    allow_retake: Optional[bool] = None
    time_limit: Optional[int] = Field(default=None, ge=1, le=180)
    is_active: Optional[bool] = None
