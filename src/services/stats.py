import logging
from datetime import datetime
from typing import Callable, List, Optional

from beanie import Document, PydanticObjectId
from fastapi import HTTPException
from pydantic import BaseModel

from src.models.leaderboard import LeaderboardStats
from src.models.quiz import Quiz, QuizStats
from src.models.submission import Submission
from src.models.user import User, UserStats
from src.services.grading import round_half_up

logger = logging.getLogger(__name__)

# одна повторная попытка после конфликта, потом 409
MAX_SWAP_ATTEMPTS = 2

USER_TARGET = "user"
QUIZ_TARGET = "quiz"
LEADERBOARD_TARGET = "leaderboard"
ALL_TARGETS = [USER_TARGET, QUIZ_TARGET, LEADERBOARD_TARGET]


def fold_user_stats(stats: UserStats, score: int, percentage: int) -> UserStats:
    total_quizzes = stats.total_quizzes + 1
    total_percentage = stats.total_percentage + percentage
    return UserStats(
        total_quizzes=total_quizzes,
        total_score=stats.total_score + score,
        total_percentage=total_percentage,
        average_score=round_half_up(total_percentage, total_quizzes),
        best_score=max(stats.best_score, percentage),
        version=stats.version + 1,
    )


def fold_quiz_stats(stats: QuizStats, percentage: int) -> QuizStats:
    attempts = stats.total_attempts + 1
    return QuizStats(
        total_attempts=attempts,
        average_score=round_half_up(stats.average_score * (attempts - 1) + percentage, attempts),
        highest_score=max(stats.highest_score, percentage),
        version=stats.version + 1,
    )


def fold_entry_stats(stats: LeaderboardStats, score: int, percentage: int,
                     time_taken: float, finished_at: datetime) -> LeaderboardStats:
    total_quizzes = stats.total_quizzes + 1
    total_percentage = stats.total_percentage + percentage
    last_quiz_date = finished_at
    if stats.last_quiz_date and stats.last_quiz_date > finished_at:
        last_quiz_date = stats.last_quiz_date
    return LeaderboardStats(
        total_score=stats.total_score + score,
        total_quizzes=total_quizzes,
        total_percentage=total_percentage,
        average_score=round_half_up(total_percentage, total_quizzes),
        best_score=max(stats.best_score, percentage),
        total_time_spent=stats.total_time_spent + time_taken,
        last_quiz_date=last_quiz_date,
        version=stats.version + 1,
    )


async def claim_submission(submission_id: PydanticObjectId, target: str) -> bool:
    """Атомарно помечает сабмишен как учтенный в target. False - уже был учтен."""
    result = await Submission.get_motor_collection().update_one(
        {"_id": submission_id, "applied": {"$ne": target}},
        {"$addToSet": {"applied": target}},
    )
    return result.modified_count == 1


async def swap_stats(document_model: type[Document], query: dict,
                     fold: Callable[[BaseModel], BaseModel], what: str) -> BaseModel:
    """Compare-and-swap поля stats по stats.version"""
    collection = document_model.get_motor_collection()
    for attempt in range(MAX_SWAP_ATTEMPTS):
        document = await document_model.find_one(query)
        if document is None:
            raise HTTPException(status_code=404, detail=f"{what.capitalize()} not found")

        new_stats = fold(document.stats)
        result = await collection.update_one(
            {**query, "stats.version": document.stats.version},
            {"$set": {"stats": new_stats.model_dump()}},
        )
        if result.modified_count == 1:
            return new_stats
        logger.warning("Stats conflict on %s %s, attempt %d", what, query, attempt + 1)

    raise HTTPException(status_code=409, detail=f"Concurrent update conflict on {what} stats, retry later")


async def release_submission(submission_id: PydanticObjectId, target: str):
    """Снимает отметку, если сабмишен так и не попал в агрегат"""
    await Submission.get_motor_collection().update_one(
        {"_id": submission_id},
        {"$pull": {"applied": target}},
    )


async def apply_claimed(submission_id: PydanticObjectId, target: str, document_model: type[Document],
                        query: dict, fold: Callable[[BaseModel], BaseModel], what: str):
    """claim + compare-and-swap. Если swap не удался, claim снимается,
    и сабмишен можно учесть повторно."""
    if not await claim_submission(submission_id, target):
        logger.info("Submission %s already counted in %s stats", submission_id, what)
        return None
    try:
        return await swap_stats(document_model, query, fold, what)
    except Exception:
        await release_submission(submission_id, target)
        raise


async def update_user_stats(submission: Submission):
    return await apply_claimed(
        submission.id, USER_TARGET, User, {"_id": submission.user_id},
        lambda stats: fold_user_stats(stats, submission.score, submission.percentage),
        "user",
    )


async def update_quiz_stats(submission: Submission):
    return await apply_claimed(
        submission.id, QUIZ_TARGET, Quiz, {"_id": submission.quiz_id},
        lambda stats: fold_quiz_stats(stats, submission.percentage),
        "quiz",
    )


async def apply_submission_stats(submission: Submission):
    """Обновляет агрегаты пользователя и квиза ровно один раз на сабмишен.
    Конфликт в одном агрегате не мешает обновить другой; первый конфликт пробрасывается."""
    results, conflict = [], None
    for update in (update_user_stats, update_quiz_stats):
        try:
            results.append(await update(submission))
        except HTTPException as e:
            if e.status_code != 409:
                raise
            conflict = conflict or e
            results.append(None)
    if conflict:
        raise conflict
    return tuple(results)


async def mark_applied(match: dict, target: str):
    await Submission.get_motor_collection().update_many(
        {**match, "applied": {"$ne": target}},
        {"$addToSet": {"applied": target}},
    )


async def pending_submissions(match: dict) -> List[Submission]:
    """Сабмишены, еще не учтенные хотя бы в одном агрегате, от старых к новым"""
    return await Submission.find(
        {**match, "applied": {"$not": {"$all": ALL_TARGETS}}}
    ).sort("+created_at").to_list()


async def replay_stats(document_model: type[Document], document_id: PydanticObjectId, target: str,
                       match: dict, group: dict, build: Callable[[Optional[dict], int], BaseModel],
                       what: str) -> BaseModel:
    """Пересчет агрегата из сабмишенов. Сабмишены сначала помечаются как учтенные,
    агрегируются только помеченные, запись идет через compare-and-swap."""
    document = await document_model.get(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"{what.capitalize()} not found")

    await mark_applied(match, target)
    for attempt in range(MAX_SWAP_ATTEMPTS):
        if attempt:
            document = await document_model.get(document_id)
        rows = await Submission.get_motor_collection().aggregate([
            {"$match": {**match, "applied": target}},
            {"$group": {"_id": None, **group}},
        ]).to_list(length=1)

        stats = build(rows[0] if rows else None, document.stats.version + 1)
        result = await document_model.get_motor_collection().update_one(
            {"_id": document_id, "stats.version": document.stats.version},
            {"$set": {"stats": stats.model_dump()}},
        )
        if result.modified_count == 1:
            return stats
        logger.warning("Reconcile conflict on %s %s, attempt %d", what, document_id, attempt + 1)

    raise HTTPException(status_code=409, detail=f"Concurrent update conflict on {what} stats, retry later")


def user_stats_from_row(row: Optional[dict], version: int) -> UserStats:
    if not row:
        return UserStats(version=version)
    return UserStats(
        total_quizzes=row["total_quizzes"],
        total_score=row["total_score"],
        total_percentage=row["total_percentage"],
        average_score=round_half_up(row["total_percentage"], row["total_quizzes"]),
        best_score=row["best_score"],
        version=version,
    )


def quiz_stats_from_row(row: Optional[dict], version: int) -> QuizStats:
    if not row:
        return QuizStats(version=version)
    return QuizStats(
        total_attempts=row["total_attempts"],
        average_score=round_half_up(row["total_percentage"], row["total_attempts"]),
        highest_score=row["highest_score"],
        version=version,
    )


async def reconcile_user_stats(user_id: PydanticObjectId) -> UserStats:
    """Пересчитывает статистику пользователя из всех его сабмишенов"""
    stats = await replay_stats(
        User, user_id, USER_TARGET, {"user_id": user_id},
        {
            "total_quizzes": {"$sum": 1},
            "total_score": {"$sum": "$score"},
            "total_percentage": {"$sum": "$percentage"},
            "best_score": {"$max": "$percentage"},
        },
        user_stats_from_row, "user",
    )
    logger.info("Reconciled stats of user %s from %d submissions", user_id, stats.total_quizzes)
    return stats


async def reconcile_quiz_stats(quiz_id: PydanticObjectId) -> QuizStats:
    """Пересчитывает статистику квиза из всех попыток"""
    stats = await replay_stats(
        Quiz, quiz_id, QUIZ_TARGET, {"quiz_id": quiz_id},
        {
            "total_attempts": {"$sum": 1},
            "total_percentage": {"$sum": "$percentage"},
            "highest_score": {"$max": "$percentage"},
        },
        quiz_stats_from_row, "quiz",
    )
    logger.info("Reconciled stats of quiz %s from %d attempts", quiz_id, stats.total_attempts)
    return stats
