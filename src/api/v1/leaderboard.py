from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query

from src.core.auth_middleware import get_current_user_id, require_admin
from src.services.leaderboard import LeaderboardService

leaderboard_router = APIRouter()


@leaderboard_router.get("/")
async def get_leaderboard(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    timeframe: str = Query("all", pattern="^(all|week|month)$"),
    _: PydanticObjectId = Depends(get_current_user_id),
    leaderboard_service: LeaderboardService = Depends(LeaderboardService),
):
    return await leaderboard_service.get_leaderboard(page, limit, timeframe)


@leaderboard_router.get("/user/rank")
async def get_user_rank(
    user_id: PydanticObjectId = Depends(get_current_user_id),
    leaderboard_service: LeaderboardService = Depends(LeaderboardService),
):
    """Место текущего пользователя и его статистика"""
    return await leaderboard_service.get_user_rank(user_id)


@leaderboard_router.get("/user/achievements")
async def get_user_achievements(
    user_id: PydanticObjectId = Depends(get_current_user_id),
    leaderboard_service: LeaderboardService = Depends(LeaderboardService),
):
    return await leaderboard_service.get_user_achievements(user_id)


@leaderboard_router.get("/stats")
async def get_leaderboard_stats(
    _: PydanticObjectId = Depends(get_current_user_id),
    leaderboard_service: LeaderboardService = Depends(LeaderboardService),
):
    return await leaderboard_service.get_leaderboard_stats()


@leaderboard_router.get("/category/{category}")
async def get_category_leaderboard(
    category: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: PydanticObjectId = Depends(get_current_user_id),
    leaderboard_service: LeaderboardService = Depends(LeaderboardService),
):
    return await leaderboard_service.get_category_leaderboard(category, page, limit)


@leaderboard_router.post("/update", dependencies=[Depends(require_admin)])
async def update_leaderboard(leaderboard_service: LeaderboardService = Depends(LeaderboardService)):
    """Полная пересборка лидерборда (только админ)"""
    return await leaderboard_service.rebuild()


@leaderboard_router.delete("/update", dependencies=[Depends(require_admin)])
async def cancel_leaderboard_update(leaderboard_service: LeaderboardService = Depends(LeaderboardService)):
    return await leaderboard_service.cancel_rebuild()
