from fastapi import APIRouter

from src.api.v1.ai_hints import ai_hints_router
from src.api.v1.leaderboard import leaderboard_router
from src.api.v1.quiz import quiz_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(quiz_router, prefix="/quiz", tags=["quiz"])
api_router.include_router(leaderboard_router, prefix="/leaderboard", tags=["leaderboard"])
api_router.include_router(ai_hints_router, prefix="/ai-hints", tags=["ai-hints"])
