# app/crud/quiz.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from app.models.quiz import Quiz
from typing import Any, Dict, List, Optional
import uuid

async def get_quiz_for_task(task_id: uuid.UUID, db: AsyncSession) -> Optional[Quiz]:
    # A missing quiz is a normal outcome
    result = await db.execute(select(Quiz).where(Quiz.task_id == task_id))
    return result.scalar_one_or_none()

async def create_quiz(task_id: uuid.UUID, title: str, questions: List[Dict[str, Any]], db: AsyncSession) -> Quiz:
    quiz = Quiz(task_id=task_id, title=title, questions=questions)
    db.add(quiz)
    await db.commit()
    await db.refresh(quiz)
    return quiz
