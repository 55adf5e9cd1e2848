import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from beanie import PydanticObjectId
from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pymongo import UpdateOne

from src.core.config import LEADERBOARD_REBUILD_BATCH_SIZE
from src.models.leaderboard import LeaderboardEntry, LeaderboardStats
from src.models.submission import Submission
from src.models.user import User
from src.services.grading import round_half_up
from src.services.stats import LEADERBOARD_TARGET, apply_claimed, fold_entry_stats

logger = logging.getLogger(__name__)

TIMEFRAMES = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}

LEADERBOARD_PIPELINE = [
    {"$group": {
        "_id": "$user_id",
        "total_score": {"$sum": "$score"},
        "total_quizzes": {"$sum": 1},
        "total_percentage": {"$sum": "$percentage"},
        "best_score": {"$max": "$percentage"},
        "total_time_spent": {"$sum": "$time_taken"},
        "last_quiz_date": {"$max": "$created_at"},
    }},
]


class UserTotals(BaseModel):
    """Агрегат сабмишенов одного пользователя"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: PydanticObjectId = Field(alias="_id")
    total_score: int = 0
    total_quizzes: int = 0
    total_percentage: int = 0
    best_score: int = 0
    total_time_spent: float = 0
    last_quiz_date: Optional[datetime] = None

    @property
    def average_score(self) -> int:
        if not self.total_quizzes:
            return 0
        return round_half_up(self.total_percentage, self.total_quizzes)

    def to_stats(self) -> LeaderboardStats:
        return LeaderboardStats(
            total_score=self.total_score,
            total_quizzes=self.total_quizzes,
            total_percentage=self.total_percentage,
            average_score=self.average_score,
            best_score=self.best_score,
            total_time_spent=self.total_time_spent,
            last_quiz_date=self.last_quiz_date,
        )


def rank_totals(totals: List[UserTotals]) -> List[UserTotals]:
    """Сортировка для рангов: total_score по убыванию,
    при равенстве average_score по убыванию, затем user_id по возрастанию.
    Ранг = позиция + 1."""
    return sorted(totals, key=lambda t: (-t.total_score, -t.average_score, str(t.user_id)))


def stats_fields(stats: LeaderboardStats) -> dict:
    """Поля stats.* для $set, без version"""
    return {f"stats.{key}": value for key, value in stats.model_dump(exclude={"version"}).items()}


def rank_change(previous_rank: Optional[int], rank: int) -> int:
    if not previous_rank:
        return 0
    return previous_rank - rank


class RebuildCancelled(Exception):
    pass


class LeaderboardRebuild:
    """Полная пересборка лидерборда из сабмишенов.
    Ачивки не перезаписываются: обновляются только stats.*, ранги и профиль.
    Набор сабмишенов фиксируется меткой rebuild_token; учтенными они отмечаются
    только после записи лидерборда. Отмененная пересборка снимает метки и
    не трогает ни записи лидерборда, ни отметки applied."""

    def __init__(self, batch_size: int = LEADERBOARD_REBUILD_BATCH_SIZE):
        self.batch_size = batch_size
        self.token = uuid.uuid4().hex
        self._cancelled = asyncio.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _raise_if_cancelled(self):
        if self.cancelled:
            raise RebuildCancelled()

    async def tag_submissions(self):
        await Submission.get_motor_collection().update_many({}, {"$set": {"rebuild_token": self.token}})

    async def untag_submissions(self):
        await Submission.get_motor_collection().update_many(
            {"rebuild_token": self.token},
            {"$unset": {"rebuild_token": ""}},
        )

    async def mark_counted(self):
        await Submission.get_motor_collection().update_many(
            {"rebuild_token": self.token},
            {"$addToSet": {"applied": LEADERBOARD_TARGET}, "$unset": {"rebuild_token": ""}},
        )

    async def collect_totals(self) -> List[UserTotals]:
        totals, batch = [], []
        cursor = Submission.get_motor_collection().aggregate(
            [{"$match": {"rebuild_token": self.token}}, *LEADERBOARD_PIPELINE],
            allowDiskUse=True,
        )
        async for row in cursor:
            batch.append(UserTotals.model_validate(row))
            if len(batch) >= self.batch_size:
                totals.extend(batch)
                batch = []
                self._raise_if_cancelled()
                await asyncio.sleep(0)
        totals.extend(batch)
        self._raise_if_cancelled()
        return totals

    async def write_entries(self, ranked: List[UserTotals]):
        collection = LeaderboardEntry.get_motor_collection()
        previous = {
            doc["user_id"]: doc.get("rank")
            async for doc in collection.find({}, {"user_id": 1, "rank": 1})
        }

        user_ids = [totals.user_id for totals in ranked]
        users = await User.find({"_id": {"$in": user_ids}}).to_list()
        user_map = {user.id: user for user in users}

        now = datetime.utcnow()
        operations = []
        for rank, totals in enumerate(ranked, start=1):
            user = user_map.get(totals.user_id)
            previous_rank = previous.get(totals.user_id)
            operations.append(UpdateOne(
                {"user_id": totals.user_id},
                {
                    "$set": {
                        **stats_fields(totals.to_stats()),
                        "username": user.username if user else "Unknown",
                        "email": user.email if user else "",
                        "rank": rank,
                        "previous_rank": previous_rank,
                        "rank_change": rank_change(previous_rank, rank),
                        "updated_at": now,
                    },
                    "$inc": {"stats.version": 1},
                    "$setOnInsert": {"achievements": []},
                },
                upsert=True,
            ))
        if operations:
            await collection.bulk_write(operations, ordered=False)

        # пользователи без сабмишенов: без ачивок удаляем, с ачивками обнуляем и снимаем ранг
        await collection.delete_many({"user_id": {"$nin": user_ids}, "achievements": {"$size": 0}})
        await collection.update_many(
            {"user_id": {"$nin": user_ids}},
            {
                "$set": {**stats_fields(LeaderboardStats()), "rank": None, "rank_change": 0, "updated_at": now},
                "$inc": {"stats.version": 1},
            },
        )

    async def run(self) -> List[UserTotals]:
        logger.info("Leaderboard rebuild started")
        self._raise_if_cancelled()
        await self.tag_submissions()
        try:
            ranked = rank_totals(await self.collect_totals())
            await self.write_entries(ranked)
        except Exception:
            await self.untag_submissions()
            raise
        await self.mark_counted()
        logger.info("Leaderboard rebuilt with %d entries", len(ranked))
        return ranked


_rebuild_lock = asyncio.Lock()
_current_rebuild: Optional[LeaderboardRebuild] = None


class LeaderboardService:

    async def rebuild(self):
        """Пересобирает лидерборд. Одновременно идет не больше одной пересборки."""
        global _current_rebuild
        if _rebuild_lock.locked():
            raise HTTPException(status_code=409, detail="Leaderboard rebuild already in progress")

        ranked = None
        async with _rebuild_lock:
            _current_rebuild = LeaderboardRebuild()
            try:
                ranked = await _current_rebuild.run()
            except RebuildCancelled:
                logger.info("Leaderboard rebuild cancelled")
            finally:
                _current_rebuild = None

        # сабмишены, пропущенные record_submission во время пересборки
        folded = await self.fold_pending()
        if ranked is None:
            return {"message": "Leaderboard rebuild cancelled", "cancelled": True,
                    "total_entries": 0, "folded_after": folded}
        return {"message": "Leaderboard updated successfully", "cancelled": False,
                "total_entries": len(ranked), "folded_after": folded}

    async def cancel_rebuild(self):
        if _current_rebuild is None:
            raise HTTPException(status_code=404, detail="No leaderboard rebuild in progress")
        _current_rebuild.cancel()
        return {"message": "Leaderboard rebuild cancellation requested"}

    async def fold_submission(self, submission: Submission) -> Optional[LeaderboardStats]:
        """Добавляет сабмишен в запись лидерборда пользователя (создает запись при необходимости).
        Ранг не пересчитывается до следующей пересборки."""
        user = await User.get(submission.user_id)
        await LeaderboardEntry.get_motor_collection().update_one(
            {"user_id": submission.user_id},
            {"$setOnInsert": {
                "username": user.username if user else "Unknown",
                "email": user.email if user else "",
                "stats": LeaderboardStats().model_dump(),
                "achievements": [],
                "rank": None,
                "previous_rank": None,
                "rank_change": 0,
                "updated_at": datetime.utcnow(),
            }},
            upsert=True,
        )
        return await apply_claimed(
            submission.id, LEADERBOARD_TARGET, LeaderboardEntry, {"user_id": submission.user_id},
            lambda stats: fold_entry_stats(
                stats, submission.score, submission.percentage, submission.time_taken, submission.created_at,
            ),
            "leaderboard entry",
        )

    async def record_submission(self, submission: Submission) -> Optional[LeaderboardStats]:
        """Инкрементальное обновление после сабмита. Во время пересборки сабмишен
        не трогается: его досчитает fold_pending после пересборки."""
        if _rebuild_lock.locked():
            logger.info("Leaderboard rebuild running, submission %s deferred", submission.id)
            return None
        return await self.fold_submission(submission)

    async def fold_pending(self) -> int:
        pending = await Submission.find({"applied": {"$ne": LEADERBOARD_TARGET}}).sort("+created_at").to_list()
        folded = 0
        for submission in pending:
            try:
                if await self.fold_submission(submission) is not None:
                    folded += 1
            except HTTPException as e:
                if e.status_code != 409:
                    raise
                # claim снят, сабмишен подхватит следующий проход
                logger.warning("Deferred leaderboard fold of submission %s conflicted", submission.id)
        return folded

    async def get_leaderboard(self, page: int = 1, limit: int = 20, timeframe: str = "all"):
        query = {}
        if timeframe in TIMEFRAMES:
            query["stats.last_quiz_date"] = {"$gte": datetime.utcnow() - TIMEFRAMES[timeframe]}

        entries = await LeaderboardEntry.find(query).sort(
            "-stats.total_score", "-stats.average_score"
        ).skip((page - 1) * limit).limit(limit).to_list()
        total = await LeaderboardEntry.find(query).count()

        return {
            "leaderboard": entries,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": -(-total // limit),
            },
        }

    async def get_user_rank(self, user_id: PydanticObjectId):
        entry = await LeaderboardEntry.find_one({"user_id": user_id})
        if not entry:
            return {"rank": None, "stats": None, "message": "No quiz attempts yet"}

        higher = await LeaderboardEntry.find({"stats.total_score": {"$gt": entry.stats.total_score}}).count()
        return {
            "rank": higher + 1,
            "stats": entry.stats,
            "rank_change": entry.rank_change,
            "rank_change_indicator": entry.rank_change_indicator,
        }

    async def get_user_achievements(self, user_id: PydanticObjectId):
        entry = await LeaderboardEntry.find_one({"user_id": user_id})
        achievements = entry.achievements if entry else []
        return {"achievements": achievements, "total_achievements": len(achievements)}

    async def get_leaderboard_stats(self):
        rows = await LeaderboardEntry.get_motor_collection().aggregate([
            {"$group": {
                "_id": None,
                "total_users": {"$sum": 1},
                "total_score": {"$sum": "$stats.total_score"},
                "average_score": {"$avg": "$stats.average_score"},
            }},
        ]).to_list(length=1)
        top_performers = await LeaderboardEntry.find().sort("-stats.total_score").limit(5).to_list()

        summary = rows[0] if rows else {}
        return {
            "total_users": summary.get("total_users", 0),
            "total_score": summary.get("total_score", 0),
            "average_score": round(summary.get("average_score") or 0),
            "top_performers": [
                {
                    "username": entry.username,
                    "total_score": entry.stats.total_score,
                    "average_score": entry.stats.average_score,
                }
                for entry in top_performers
            ],
        }

    async def get_category_leaderboard(self, category: str, page: int = 1, limit: int = 20):
        """Рейтинг по сабмишенам квизов одной категории, считается на лету"""
        skip = (page - 1) * limit
        rows = await Submission.get_motor_collection().aggregate([
            {"$lookup": {"from": "quizzes", "localField": "quiz_id", "foreignField": "_id", "as": "quiz"}},
            {"$unwind": "$quiz"},
            {"$match": {"quiz.category": category}},
            *LEADERBOARD_PIPELINE,
        ]).to_list(length=None)

        ranked = rank_totals([UserTotals.model_validate(row) for row in rows])
        page_totals = ranked[skip:skip + limit]
        users = await User.find({"_id": {"$in": [t.user_id for t in page_totals]}}).to_list()
        user_map = {user.id: user for user in users}

        leaderboard = []
        for rank, totals in enumerate(page_totals, start=skip + 1):
            user = user_map.get(totals.user_id)
            leaderboard.append({
                "rank": rank,
                "user_id": str(totals.user_id),
                "username": user.username if user else "Unknown",
                "total_score": totals.total_score,
                "total_quizzes": totals.total_quizzes,
                "average_score": totals.average_score,
                "best_score": totals.best_score,
            })

        return {
            "category": category,
            "leaderboard": leaderboard,
            "pagination": {"page": page, "limit": limit, "total": len(ranked)},
        }
