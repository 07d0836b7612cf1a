# app/api/v1/routes/functions.py
"""
The AI functions, callable directly. Goal-scoped calls check that the goal
belongs to the caller.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.core.auth import User
from app.core.database import get_async_session
from app.core.exceptions import GenerationError
from app.crud import goal as crud_goal
from app.schemas.generation import (
    ChatReplyRequest,
    ChatReplyResponse,
    GoalContent,
    GoalContentRequest,
    GoalImageRequest,
    TaskSummaryRequest,
    TaskSummaryResponse,
)
from app.services import generators

router = APIRouter(prefix="/functions", tags=["AI Functions"])
logger = logging.getLogger(__name__)

@router.post("/generate-goal-content", response_model=GoalContent)
async def generate_goal_content(
    body: GoalContentRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    if body.goal_id is not None and await crud_goal.get_goal_by_id(body.goal_id, user.id, db) is None:
        raise HTTPException(status_code=404, detail="Goal not found")
    try:
        return await generators.generate_goal_content(body.title, body.description, body.goal_id)
    except GenerationError as e:
        logger.error(f"Goal content generation failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

@router.post("/generate-goal-image")
async def generate_goal_image(
    body: GoalImageRequest,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    """Generate and store a goal image; falls back to a preset image on failure."""
    if await crud_goal.get_goal_by_id(body.goalId, user.id, db) is None:
        raise HTTPException(status_code=404, detail="Goal not found")
    return await generators.generate_goal_image(
        body.goalId, body.goalTitle, session_factory=request.app.state.session_factory
    )

@router.post("/generate-task-summary", response_model=TaskSummaryResponse)
async def generate_task_summary(
    body: TaskSummaryRequest,
    user: User = Depends(get_current_user),
):
    try:
        summary = await generators.generate_task_summary([task.model_dump() for task in body.tasks])
    except GenerationError as e:
        logger.error(f"Task summary generation failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return TaskSummaryResponse(summary=summary)

@router.post("/financial-advice", response_model=ChatReplyResponse)
async def financial_advice(
    body: ChatReplyRequest,
    user: User = Depends(get_current_user),
):
    try:
        reply = await generators.generate_chat_reply(body.message, body.threadId, body.conciseMode)
    except GenerationError as e:
        logger.error(f"Financial advice failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return ChatReplyResponse(text=generators.extract_reply_text(reply))
