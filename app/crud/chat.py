# app/crud/chat.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import delete, func
from datetime import datetime
from app.models.chat import ChatThread, ChatMessage, AI_SENDER
from typing import List, Optional
import uuid

async def get_threads_for_user(user_id: uuid.UUID, db: AsyncSession) -> List[ChatThread]:
    result = await db.execute(
        select(ChatThread).where(ChatThread.user_id == user_id).order_by(ChatThread.created_at.desc())
    )
    return result.scalars().all()

async def get_thread(thread_id: uuid.UUID, user_id: uuid.UUID, db: AsyncSession) -> Optional[ChatThread]:
    result = await db.execute(
        select(ChatThread).where(ChatThread.id == thread_id, ChatThread.user_id == user_id)
    )
    return result.scalar_one_or_none()

async def create_thread(user_id: uuid.UUID, title: str, db: AsyncSession, renamed: bool = False) -> ChatThread:
    thread = ChatThread(user_id=user_id, title=title, renamed=renamed)
    db.add(thread)
    await db.commit()
    await db.refresh(thread)
    return thread

async def set_thread_title(thread: ChatThread, title: str, db: AsyncSession, renamed: bool = False) -> ChatThread:
    thread.title = title
    if renamed:
        thread.renamed = True
    thread.updated_at = datetime.utcnow()
    await db.commit()
    await db.refresh(thread)
    return thread

async def touch_thread(thread: ChatThread, db: AsyncSession) -> None:
    thread.updated_at = datetime.utcnow()
    await db.commit()

async def delete_thread(thread: ChatThread, db: AsyncSession) -> int:
    """Delete a thread and its messages. Messages go first; the foreign key has no cascade."""
    result = await db.execute(delete(ChatMessage).where(ChatMessage.thread_id == thread.id))
    removed = result.rowcount
    await db.execute(delete(ChatThread).where(ChatThread.id == thread.id))
    await db.commit()
    return removed

async def get_messages(thread_id: uuid.UUID, db: AsyncSession) -> List[ChatMessage]:
    result = await db.execute(
        select(ChatMessage).where(ChatMessage.thread_id == thread_id).order_by(ChatMessage.created_at, ChatMessage.id)
    )
    return result.scalars().all()

async def count_user_messages(thread_id: uuid.UUID, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count()).select_from(ChatMessage)
        .where(ChatMessage.thread_id == thread_id, ChatMessage.sender != AI_SENDER)
    )
    return result.scalar_one() or 0

async def create_message(thread_id: uuid.UUID, sender: str, content: str, db: AsyncSession) -> ChatMessage:
    message = ChatMessage(thread_id=thread_id, sender=sender, content=content)
    db.add(message)
    await db.commit()
    await db.refresh(message)
    return message
