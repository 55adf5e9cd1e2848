from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuestionResult(CamelModel):
    question_id: str
    user_answer: str
    correct_answer: str
    is_correct: bool
    points: int
    points_awarded: int
    time_spent: float = 0


class SubmissionResult(CamelModel):
    """Форма результата, на которую завязаны UI и письма - все поля всегда присутствуют"""
    score: int = 0
    total_marks: int = 0
    percentage: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    skipped_answers: int = 0
    grade: str = "F"
    performance: str = "Poor"
    insights: List[str] = []
    per_question: List[QuestionResult] = []


class AchievementOut(CamelModel):
    type: str
    earned_at: datetime
    description: str


class SubmitResponse(CamelModel):
    submission_id: str
    time_taken: float
    result: SubmissionResult
    new_achievements: List[AchievementOut] = []
    stats_pending: bool = False  # агрегаты будут досчитаны позже
    message: Optional[str] = None
