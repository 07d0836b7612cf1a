# app/api/v1/routes/goals.py
from typing import List
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_board, get_current_user
from app.core.auth import User
from app.core.database import get_async_session
from app.schemas.goal import GoalCreate, GoalProgressResponse, GoalState, GoalUpdate, ImageViewResponse
from app.schemas.task import TaskCreate, TaskRead
from app.services import goals as goal_service
from app.services.goal_board import GoalBoard

router = APIRouter(prefix="/goals", tags=["Goals"])

GOAL_NOT_FOUND = "Goal not found"

@router.get("", response_model=List[GoalState])
async def list_goals(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    """All goals of the current user, newest first, with local image state merged in."""
    return await goal_service.list_goals(db, user.id, board)

@router.post("", response_model=GoalState, status_code=status.HTTP_201_CREATED)
async def create_goal(
    goal_in: GoalCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    """
    Create a goal. It starts on a preset image with `image_loading=true`;
    tasks, quizzes, summary and the generated image arrive in the background.
    """
    return await goal_service.create_goal(db, user.id, goal_in, board)

@router.get("/{goal_id}", response_model=GoalState)
async def get_goal(
    goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    state = board.get(goal_id)
    if state is None:
        await goal_service.list_goals(db, user.id, board)
        state = board.get(goal_id)
    if state is None:
        raise HTTPException(status_code=404, detail=GOAL_NOT_FOUND)
    return state

@router.patch("/{goal_id}", response_model=GoalState)
async def update_goal(
    goal_id: uuid.UUID,
    goal_in: GoalUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    state = await goal_service.update_goal(db, user.id, goal_id, goal_in, board)
    if state is None:
        raise HTTPException(status_code=404, detail=GOAL_NOT_FOUND)
    return state

@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal(
    goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    if not await goal_service.delete_goal(db, user.id, goal_id, board):
        raise HTTPException(status_code=404, detail=GOAL_NOT_FOUND)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.get("/{goal_id}/progress", response_model=GoalProgressResponse)
async def get_goal_progress(
    goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    """Share of completed tasks, rounded half up; 0 for a goal without tasks."""
    progress = await goal_service.get_progress(db, user.id, goal_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=GOAL_NOT_FOUND)
    return progress

def _image_response(goal_id: uuid.UUID, view) -> ImageViewResponse:
    return ImageViewResponse(
        goal_id=goal_id,
        state=view.state.value,
        display_url=view.display_url,
        is_loading=view.is_loading,
        has_error=view.has_error,
        has_loaded=view.has_loaded,
        attempts=view.attempts,
    )

@router.get("/{goal_id}/image", response_model=ImageViewResponse)
async def get_goal_image(
    goal_id: uuid.UUID,
    force_refresh: bool = Query(False),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    """What to display for the goal's image right now."""
    if board.get(goal_id) is None:
        await goal_service.list_goals(db, user.id, board)
    view = await board.image_view(goal_id, force_refresh=force_refresh)
    if view is None:
        raise HTTPException(status_code=404, detail=GOAL_NOT_FOUND)
    return _image_response(goal_id, view)

@router.post("/{goal_id}/image/retry", response_model=ImageViewResponse)
async def retry_goal_image(
    goal_id: uuid.UUID,
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    view = await board.retry_image(goal_id)
    if view is None:
        raise HTTPException(status_code=404, detail=GOAL_NOT_FOUND)
    return _image_response(goal_id, view)

@router.get("/{goal_id}/tasks", response_model=List[TaskRead])
async def list_goal_tasks(
    goal_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
    board: GoalBoard = Depends(get_board),
):
    tasks = await goal_service.list_tasks(db, user.id, goal_id, board)
    if tasks is None:
        raise HTTPException(status_code=404, detail=GOAL_NOT_FOUND)
    return tasks

@router.post("/{goal_id}/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_goal_task(
    goal_id: uuid.UUID,
    task_in: TaskCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    task = await goal_service.add_task(db, user.id, goal_id, task_in)
    if task is None:
        raise HTTPException(status_code=404, detail=GOAL_NOT_FOUND)
    return task
