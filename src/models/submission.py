from datetime import datetime
from typing import List, Optional

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field

from src.models.enums import SubmissionStatus


class AnswerRecord(BaseModel):
    """Оцененный ответ на один вопрос квиза"""
    question_id: str
    user_answer: str = ""  # пустая строка - вопрос пропущен
    correct_answer: str
    is_correct: bool
    points: int
    points_awarded: int
    time_spent: float = 0


class SubmissionFeedback(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str = Field(default="", max_length=500)


class Submission(Document):
    user_id: PydanticObjectId
    quiz_id: PydanticObjectId
    answers: List[AnswerRecord] = []
    score: int = Field(ge=0)
    total_marks: int = Field(ge=1)
    percentage: int = Field(ge=0, le=100)
    correct_answers: int = Field(ge=0)
    incorrect_answers: int = Field(ge=0)
    skipped_answers: int = Field(default=0, ge=0)
    grade: str
    performance: str
    time_taken: float  # seconds
    time_limit: int  # seconds
    start_time: datetime
    end_time: datetime
    status: SubmissionStatus = SubmissionStatus.COMPLETED
    feedback: Optional[SubmissionFeedback] = None
    email_sent: bool = False
    email_sent_at: Optional[datetime] = None
    applied: List[str] = []  # агрегаты, в которые сабмишен уже учтен
    rebuild_token: Optional[str] = None  # метка идущей пересборки лидерборда
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "submissions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("quiz_id", 1), ("created_at", -1)],
            [("user_id", 1), ("quiz_id", 1)],
            [("percentage", -1)],
        ]
