import logging
from datetime import datetime
from typing import Iterable, List

from beanie import PydanticObjectId

from src.models.enums import AchievementType
from src.models.leaderboard import Achievement, LeaderboardEntry, LeaderboardStats
from src.models.submission import Submission

logger = logging.getLogger(__name__)

ACHIEVEMENT_DESCRIPTIONS = {
    AchievementType.FIRST_QUIZ: "Completed your first quiz!",
    AchievementType.PERFECT_SCORE: "Achieved a perfect score!",
    AchievementType.SPEED_DEMON: "Fast and accurate! Completed quiz quickly with high score.",
    AchievementType.MASTER: "Quiz Master! Maintained excellent performance across multiple quizzes.",
}

SPEED_DEMON_TIME_RATIO = 0.5
SPEED_DEMON_MIN_PERCENTAGE = 80
MASTER_MIN_AVERAGE = 90
MASTER_MIN_QUIZZES = 5


def evaluate_achievements(stats: LeaderboardStats, earned: Iterable[AchievementType],
                          percentage: int, time_taken: float, time_limit: float) -> List[AchievementType]:
    """Какие ачивки заслужены этим сабмишеном и еще не выданы"""
    earned = set(earned)
    qualified = []

    if stats.total_quizzes == 1:
        qualified.append(AchievementType.FIRST_QUIZ)

    if percentage == 100:
        qualified.append(AchievementType.PERFECT_SCORE)

    if time_limit > 0 and time_taken / time_limit < SPEED_DEMON_TIME_RATIO \
            and percentage >= SPEED_DEMON_MIN_PERCENTAGE:
        qualified.append(AchievementType.SPEED_DEMON)

    if stats.average_score >= MASTER_MIN_AVERAGE and stats.total_quizzes >= MASTER_MIN_QUIZZES:
        qualified.append(AchievementType.MASTER)

    return [achievement_type for achievement_type in qualified if achievement_type not in earned]


async def award_achievements(user_id: PydanticObjectId, submission: Submission) -> List[Achievement]:
    """Выдает новые ачивки по уже обновленной записи лидерборда.
    Возвращает только выданные в этом вызове."""
    entry = await LeaderboardEntry.find_one({"user_id": user_id})
    if not entry:
        return []

    candidates = evaluate_achievements(
        entry.stats,
        (a.type for a in entry.achievements),
        submission.percentage,
        submission.time_taken,
        submission.time_limit,
    )

    collection = LeaderboardEntry.get_motor_collection()
    granted = []
    for achievement_type in candidates:
        achievement = Achievement(
            type=achievement_type,
            earned_at=datetime.utcnow(),
            description=ACHIEVEMENT_DESCRIPTIONS[achievement_type],
        )
        # $ne по типу не дает выдать одну ачивку дважды при гонке
        result = await collection.update_one(
            {"user_id": user_id, "achievements.type": {"$ne": achievement_type.value}},
            {"$push": {"achievements": {
                "type": achievement_type.value,
                "earned_at": achievement.earned_at,
                "description": achievement.description,
            }}},
        )
        if result.modified_count == 1:
            granted.append(achievement)

    if granted:
        logger.info("User %s earned %s", user_id, [a.type.value for a in granted])
    return granted
