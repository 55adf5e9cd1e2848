from beanie import PydanticObjectId
from fastapi import APIRouter, Depends

from src.core.auth_middleware import get_current_user_id
from src.schemas.req.quiz import HintRequest
from src.services.ai_hints import AIHintsService

ai_hints_router = APIRouter()


@ai_hints_router.post("/hint")
async def generate_hint(
    req: HintRequest,
    _: PydanticObjectId = Depends(get_current_user_id),
    ai_hints_service: AIHintsService = Depends(AIHintsService),
):
    return await ai_hints_service.generate_hint(req)


@ai_hints_router.get("/availability")
async def check_availability(
    _: PydanticObjectId = Depends(get_current_user_id),
    ai_hints_service: AIHintsService = Depends(AIHintsService),
):
    return {"available": ai_hints_service.llm.available}


@ai_hints_router.post("/quiz-feedback/{submission_id}")
async def generate_quiz_feedback(
    submission_id: PydanticObjectId,
    user_id: PydanticObjectId = Depends(get_current_user_id),
    ai_hints_service: AIHintsService = Depends(AIHintsService),
):
    """Разбор сабмишена с объяснениями от LLM"""
    return await ai_hints_service.generate_quiz_feedback(submission_id, user_id)
