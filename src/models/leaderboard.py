from datetime import datetime
from typing import List, Optional

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field

from src.models.enums import AchievementType


class Achievement(BaseModel):
    type: AchievementType
    earned_at: datetime = Field(default_factory=datetime.utcnow)
    description: str


class LeaderboardStats(BaseModel):
    total_score: int = 0
    total_quizzes: int = 0
    total_percentage: int = 0
    average_score: int = 0
    best_score: int = 0
    total_time_spent: float = 0  # seconds
    last_quiz_date: Optional[datetime] = None
    version: int = 0


class LeaderboardEntry(Document):
    """Производная запись лидерборда, пересобирается из сабмишенов.
    Ачивки хранятся здесь же, но пересборка их никогда не трогает."""
    user_id: Indexed(PydanticObjectId, unique=True)
    username: str = "Unknown"
    email: str = ""
    stats: LeaderboardStats = Field(default_factory=LeaderboardStats)
    achievements: List[Achievement] = []
    rank: Optional[int] = None
    previous_rank: Optional[int] = None
    rank_change: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "leaderboard"
        indexes = [
            [("stats.total_score", -1)],
            [("stats.average_score", -1)],
            [("rank", 1)],
        ]

    @property
    def rank_change_indicator(self) -> str:
        if self.rank_change > 0:
            return "up"
        if self.rank_change < 0:
            return "down"
        return "stable"
