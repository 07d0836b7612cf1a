# app/crud/goal.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import update, func
from app.core.db_utils import with_db_retry
from app.models.goal import Goal
from typing import List, Optional, Tuple
import uuid
from app.schemas.goal import GoalCreate, GoalUpdate

async def get_goals_for_user(user_id: uuid.UUID, db: AsyncSession) -> List[Goal]:
    result = await db.execute(
        select(Goal).where(Goal.user_id == user_id).order_by(Goal.created_at.desc())
    )
    return result.scalars().all()

async def get_goal_by_id(goal_id: uuid.UUID, user_id: uuid.UUID, db: AsyncSession) -> Optional[Goal]:
    result = await db.execute(
        select(Goal).where(Goal.id == goal_id, Goal.user_id == user_id)
    )
    return result.scalar_one_or_none()

async def get_goal(goal_id: uuid.UUID, db: AsyncSession) -> Optional[Goal]:
    """Unscoped lookup used by background generation work"""
    result = await db.execute(select(Goal).where(Goal.id == goal_id))
    return result.scalar_one_or_none()

async def count_active_goals(user_id: uuid.UUID, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count()).select_from(Goal).where(Goal.user_id == user_id, Goal.completed == False)
    )
    return result.scalar_one() or 0

async def create_goal_for_user(user_id: uuid.UUID, goal_in: GoalCreate, image_url: str, db: AsyncSession) -> Goal:
    # New goals start on a preset image while the generated one is pending
    new_goal = Goal(**goal_in.model_dump(), user_id=user_id, image_url=image_url, image_loading=True)
    db.add(new_goal)
    await db.commit()
    await db.refresh(new_goal)
    return new_goal

async def update_goal(goal: Goal, goal_in: GoalUpdate, db: AsyncSession) -> Goal:
    for field, value in goal_in.model_dump(exclude_unset=True).items():
        setattr(goal, field, value)
    db.add(goal)
    await db.commit()
    await db.refresh(goal)
    return goal

async def set_goal_image(goal_id: uuid.UUID, image_url: str, db: AsyncSession) -> bool:
    """Store a usable image and clear the loading flag in one write"""
    result = await db.execute(
        update(Goal).where(Goal.id == goal_id).values(image_url=image_url, image_loading=False)
    )
    await db.commit()
    return result.rowcount > 0

async def set_task_summary(goal_id: uuid.UUID, summary: str, db: AsyncSession) -> bool:
    result = await db.execute(
        update(Goal).where(Goal.id == goal_id).values(task_summary=summary)
    )
    await db.commit()
    return result.rowcount > 0

async def set_goal_completed(goal: Goal, completed: bool, db: AsyncSession) -> Goal:
    goal.completed = completed
    await db.commit()
    await db.refresh(goal)
    return goal

@with_db_retry(max_retries=2, retry_delay=0.25)
async def read_image_status(goal_id: uuid.UUID, db: AsyncSession) -> Optional[Tuple[Optional[str], bool, str]]:
    """Fresh (image_url, image_loading, title) for a goal, or None when it is gone"""
    result = await db.execute(
        select(Goal.image_url, Goal.image_loading, Goal.title).where(Goal.id == goal_id)
    )
    row = result.first()
    if row is None:
        return None
    return row.image_url, bool(row.image_loading), row.title

async def delete_goal(goal: Goal, db: AsyncSession) -> None:
    # Tasks and quizzes go with it through ON DELETE CASCADE
    await db.delete(goal)
    await db.commit()
