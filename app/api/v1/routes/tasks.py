# app/api/v1/routes/tasks.py
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_board, get_current_user
from app.core.auth import User
from app.core.database import get_async_session
from app.schemas.quiz import QuizRead, QuizResult, QuizSubmission
from app.schemas.task import TaskRead, TaskStatusUpdate
from app.services import goals as goal_service
from app.services.goal_board import GoalBoard

router = APIRouter(prefix="/tasks", tags=["Tasks"])

@router.patch("/{task_id}", response_model=TaskRead)
async def update_task_status(
    task_id: uuid.UUID,
    update: TaskStatusUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    """Mark a task done or not done; the goal completes when all its tasks are done."""
    outcome = await goal_service.set_task_status(db, user.id, task_id, update.completed, board)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return outcome[0]

@router.get("/{task_id}/quiz", response_model=Optional[QuizRead])
async def get_task_quiz(
    task_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    """The task's quiz, or null when the task has none."""
    task, quiz = await goal_service.get_quiz(db, user.id, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return quiz

@router.post("/{task_id}/quiz/submit", response_model=QuizResult)
async def submit_task_quiz(
    task_id: uuid.UUID,
    submission: QuizSubmission,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    """Score the answers; 70% or more completes the task."""
    result = await goal_service.submit_quiz(db, user.id, task_id, submission, board)
    if result is None:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return result
