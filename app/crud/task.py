# app/crud/task.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import func
from app.models.goal import Goal
from app.models.task import Task
from app.schemas.task import TaskCreate
from typing import Any, Dict, Iterable, List, Optional
import uuid

async def get_tasks_for_goal(goal_id: uuid.UUID, db: AsyncSession) -> List[Task]:
    result = await db.execute(
        select(Task).where(Task.goal_id == goal_id).order_by(Task.order_number, Task.created_at)
    )
    return result.scalars().all()

async def count_tasks(goal_id: uuid.UUID, db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(Task).where(Task.goal_id == goal_id))
    return result.scalar_one() or 0

async def get_task_for_user(task_id: uuid.UUID, user_id: uuid.UUID, db: AsyncSession) -> Optional[Task]:
    result = await db.execute(
        select(Task).join(Goal, Task.goal_id == Goal.id).where(Task.id == task_id, Goal.user_id == user_id)
    )
    return result.scalar_one_or_none()

async def create_task(goal_id: uuid.UUID, task_in: TaskCreate, db: AsyncSession) -> Task:
    # Appended after the existing tasks
    order_number = await count_tasks(goal_id, db)
    task = Task(**task_in.model_dump(), goal_id=goal_id, order_number=order_number)
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task

async def create_tasks(goal_id: uuid.UUID, tasks: Iterable[Dict[str, Any]], db: AsyncSession) -> List[Task]:
    """Insert generated tasks in generation order"""
    start = await count_tasks(goal_id, db)
    created = [
        Task(
            goal_id=goal_id,
            title=item["title"],
            description=item.get("description"),
            article_content=item.get("article_content"),
            order_number=start + index,
        )
        for index, item in enumerate(tasks)
    ]
    db.add_all(created)
    await db.commit()
    for task in created:
        await db.refresh(task)
    return created

async def set_task_completed(task: Task, completed: bool, db: AsyncSession) -> Task:
    task.completed = completed
    await db.commit()
    await db.refresh(task)
    return task

async def all_tasks_completed(goal_id: uuid.UUID, db: AsyncSession) -> bool:
    result = await db.execute(
        select(func.count(), func.count().filter(Task.completed == True))
        .select_from(Task)
        .where(Task.goal_id == goal_id)
    )
    total, done = result.one()
    return total > 0 and total == done
