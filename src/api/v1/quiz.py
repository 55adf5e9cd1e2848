from typing import Optional

from beanie import PydanticObjectId
from fastapi import APIRouter, BackgroundTasks, Depends, Query

from src.core.auth_middleware import get_current_user, get_current_user_id, require_admin
from src.schemas.req.quiz import FeedbackDTO, QuizGenerateDTO, QuizSettingsDTO, QuizSubmitDTO
from src.schemas.res.submission import SubmitResponse
from src.services.notifications import send_quiz_results
from src.services.quiz import QuizService
from src.services.stats import reconcile_quiz_stats, reconcile_user_stats

quiz_router = APIRouter()


@quiz_router.get("/categories")
async def get_categories(quiz_service: QuizService = Depends(QuizService)):
    return await quiz_service.get_categories()


@quiz_router.post("/generate", status_code=201)
async def generate_quiz(
    quiz_data: QuizGenerateDTO,
    user_id: PydanticObjectId = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(QuizService),
):
    """Создать квиз из trivia API"""
    return await quiz_service.generate_quiz(quiz_data, user_id)


@quiz_router.get("/user/submissions")
async def get_user_submissions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    min_score: Optional[int] = Query(None, ge=0, le=100),
    user_id: PydanticObjectId = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(QuizService),
):
    return await quiz_service.get_user_submissions(user_id, page, limit, min_score)


@quiz_router.get("/submission/{submission_id}")
async def get_submission_details(
    submission_id: PydanticObjectId,
    user_id: PydanticObjectId = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(QuizService),
):
    return await quiz_service.get_submission_details(submission_id, user_id)


@quiz_router.put("/submission/{submission_id}/feedback")
async def add_submission_feedback(
    submission_id: PydanticObjectId,
    feedback_data: FeedbackDTO,
    user_id: PydanticObjectId = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(QuizService),
):
    return await quiz_service.add_submission_feedback(submission_id, user_id, feedback_data)


@quiz_router.post("/user/{target_user_id}/stats/reconcile", dependencies=[Depends(require_admin)])
async def reconcile_user(target_user_id: PydanticObjectId):
    """Пересчитать статистику пользователя из сабмишенов"""
    return await reconcile_user_stats(target_user_id)


@quiz_router.get("/public")
async def get_public_quizzes(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    search: Optional[str] = None,
    quiz_service: QuizService = Depends(QuizService),
):
    return await quiz_service.get_public_quizzes(page, limit, category, difficulty, search)


@quiz_router.get("/created")
async def get_user_created_quizzes(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_active: bool = True,
    user_id: PydanticObjectId = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(QuizService),
):
    return await quiz_service.get_user_created_quizzes(user_id, page, limit, is_active)


@quiz_router.get("/analytics", dependencies=[Depends(require_admin)])
async def get_quiz_analytics(
    timeframe: str = Query("30d", pattern="^(7d|30d|90d|1y)$"),
    quiz_service: QuizService = Depends(QuizService),
):
    return await quiz_service.get_quiz_analytics(timeframe)


@quiz_router.get("/{quiz_id}")
async def get_quiz(quiz_id: PydanticObjectId, quiz_service: QuizService = Depends(QuizService)):
    return await quiz_service.get_quiz(quiz_id)


@quiz_router.put("/{quiz_id}/settings")
async def update_quiz_settings(
    quiz_id: PydanticObjectId,
    settings: QuizSettingsDTO,
    token: dict = Depends(get_current_user),
    user_id: PydanticObjectId = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(QuizService),
):
    """Изменить настройки квиза (автор или админ)"""
    return await quiz_service.update_quiz_settings(quiz_id, user_id, token.get("role") == "admin", settings)


@quiz_router.delete("/{quiz_id}")
async def delete_quiz(
    quiz_id: PydanticObjectId,
    token: dict = Depends(get_current_user),
    user_id: PydanticObjectId = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(QuizService),
):
    return await quiz_service.delete_quiz(quiz_id, user_id, token.get("role") == "admin")


@quiz_router.post("/{quiz_id}/submit", response_model=SubmitResponse, status_code=201)
async def submit_quiz(
    quiz_id: PydanticObjectId,
    submit_data: QuizSubmitDTO,
    background_tasks: BackgroundTasks,
    user_id: PydanticObjectId = Depends(get_current_user_id),
    quiz_service: QuizService = Depends(QuizService),
):
    """Сдать квиз. Письмо с результатами уходит после ответа."""
    response = await quiz_service.submit_quiz(quiz_id, user_id, submit_data)
    background_tasks.add_task(send_quiz_results, PydanticObjectId(response.submission_id))
    return response


@quiz_router.get("/{quiz_id}/leaderboard")
async def get_quiz_leaderboard(
    quiz_id: PydanticObjectId,
    limit: int = Query(10, ge=1, le=100),
    quiz_service: QuizService = Depends(QuizService),
):
    return await quiz_service.get_quiz_leaderboard(quiz_id, limit)


@quiz_router.get("/{quiz_id}/stats")
async def get_quiz_stats(quiz_id: PydanticObjectId, quiz_service: QuizService = Depends(QuizService)):
    return await quiz_service.get_quiz_stats(quiz_id)


@quiz_router.post("/{quiz_id}/stats/reconcile", dependencies=[Depends(require_admin)])
async def reconcile_quiz(quiz_id: PydanticObjectId):
    """Пересчитать статистику квиза из всех попыток"""
    return await reconcile_quiz_stats(quiz_id)
