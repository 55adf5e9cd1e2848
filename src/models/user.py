from datetime import datetime
from enum import Enum

from beanie import Document, Indexed
from pydantic import BaseModel, Field


class UserRoleEnum(str, Enum):
    USER = "user"
    ADMIN = "admin"


class UserPreferences(BaseModel):
    email_notifications: bool = True


class UserStats(BaseModel):
    total_quizzes: int = 0
    total_score: int = 0
    total_percentage: int = 0
    average_score: int = 0  # средний процент по всем попыткам
    best_score: int = 0
    version: int = 0


class User(Document):
    username: Indexed(str, unique=True)
    email: Indexed(str, unique=True)
    first_name: str = ""
    last_name: str = ""
    role: UserRoleEnum = UserRoleEnum.USER
    is_active: bool = True
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    stats: UserStats = Field(default_factory=UserStats)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
