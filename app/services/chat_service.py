# app/services/chat_service.py
"""
Chat threads and messages.

Sending always leaves the thread answered: the user's message is stored
first, then the assistant's reply, or a fixed apology when the responder
fails.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import AsyncSessionLocal
from app.core.exceptions import GenerationError, StoreError, ThreadRenameError
from app.crud import chat as crud_chat
from app.crud import subscription as crud_subscription
from app.models.chat import AI_SENDER, ChatMessage, ChatThread
from app.services import generators
from app.services.limits import ensure_can_send_message
from app.utils.notifications import notify_error
from app.utils.realtime import ChangeFeed, FeedSubscription, change_feed

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "chat_messages"
DERIVED_TITLE_LENGTH = 50

Responder = Callable[[str, uuid.UUID, bool], Awaitable[Dict[str, Any]]]


@dataclass
class SendResult:
    thread: ChatThread
    user_message: ChatMessage
    ai_message: ChatMessage
    ai_failed: bool = False


def default_thread_title(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return now.strftime("Chat %b %d, %Y")


def derive_thread_title(message: str, limit: int = DERIVED_TITLE_LENGTH) -> str:
    """Thread title taken from the first user message."""
    text = " ".join(message.split())
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0] or text[:limit]
    return cut.rstrip(" ,.;:") + "..."


async def _chat_store_failure(db: AsyncSession, user_id: uuid.UUID, operation: str, title: str,
                              error: SQLAlchemyError) -> StoreError:
    await db.rollback()
    logger.error(f"{operation} failed for user {user_id}: {error}")
    await notify_error(db, user_id, title, "Something went wrong with your chat. Please try again.", "chat")
    return StoreError(operation, str(error))


async def _reload_after_rollback(db: AsyncSession, user_id: uuid.UUID, *rows: Any) -> None:
    """Undo a failed optional write and reload the rows the rollback expired."""
    await db.rollback()
    try:
        for row in rows:
            await db.refresh(row)
    except SQLAlchemyError as e:
        raise await _chat_store_failure(db, user_id, "send_message", "Error sending message", e)


# ────────────────────────────────────────────────────────────────────────────────
# THREADS
# ────────────────────────────────────────────────────────────────────────────────
async def create_thread(db: AsyncSession, user_id: uuid.UUID, title: Optional[str] = None) -> ChatThread:
    # An explicit title counts as a rename and is never replaced automatically
    explicit = (title or "").strip()
    try:
        return await crud_chat.create_thread(user_id, explicit or default_thread_title(), db, renamed=bool(explicit))
    except SQLAlchemyError as e:
        raise await _chat_store_failure(db, user_id, "create_thread", "Error creating chat", e)


async def rename_thread(db: AsyncSession, user_id: uuid.UUID, thread_id: uuid.UUID, title: str) -> Optional[ChatThread]:
    """Rename a thread. Blank titles are rejected and nothing is written."""
    new_title = (title or "").strip()
    if not new_title:
        raise ThreadRenameError("Thread title cannot be empty")
    thread = await crud_chat.get_thread(thread_id, user_id, db)
    if thread is None:
        return None
    try:
        return await crud_chat.set_thread_title(thread, new_title, db, renamed=True)
    except SQLAlchemyError as e:
        raise await _chat_store_failure(db, user_id, "rename_thread", "Error renaming chat", e)


async def delete_thread(db: AsyncSession, user_id: uuid.UUID, thread_id: uuid.UUID) -> bool:
    thread = await crud_chat.get_thread(thread_id, user_id, db)
    if thread is None:
        return False
    try:
        removed = await crud_chat.delete_thread(thread, db)
    except SQLAlchemyError as e:
        raise await _chat_store_failure(db, user_id, "delete_thread", "Error deleting chat", e)
    logger.info(f"Deleted thread {thread_id} with {removed} messages")
    return True


# ────────────────────────────────────────────────────────────────────────────────
# MESSAGES
# ────────────────────────────────────────────────────────────────────────────────
def publish_message(message: ChatMessage, feed: ChangeFeed = change_feed) -> None:
    feed.publish(MESSAGES_TABLE, message.to_event())


async def send_message(
    db: AsyncSession,
    user_id: uuid.UUID,
    thread_id: uuid.UUID,
    content: str,
    concise_mode: bool = False,
    responder: Optional[Responder] = None,
    feed: ChangeFeed = change_feed,
) -> Optional[SendResult]:
    """
    Store the user's message, ask the responder, store its reply.

    Raises PlanLimitReached before writing anything when today's message
    cap is hit. Returns None when the thread does not belong to the user.
    """
    content = (content or "").strip()
    if not content:
        raise ValueError("Message cannot be empty")
    thread = await crud_chat.get_thread(thread_id, user_id, db)
    if thread is None:
        return None
    await ensure_can_send_message(user_id, db)

    try:
        first_message = await crud_chat.count_user_messages(thread.id, db) == 0
        user_message = await crud_chat.create_message(thread.id, str(user_id), content, db)
    except SQLAlchemyError as e:
        raise await _chat_store_failure(db, user_id, "send_message", "Error sending message", e)
    user_message_id = user_message.id
    publish_message(user_message, feed)

    try:
        await crud_subscription.increment_usage(user_id, db, messages=1)
    except SQLAlchemyError as e:
        logger.error(f"Usage tracking failed for message {user_message_id}: {e}")
        await _reload_after_rollback(db, user_id, thread, user_message)

    if first_message and not thread.renamed:
        title = derive_thread_title(content)
        try:
            thread = await crud_chat.set_thread_title(thread, title, db)
        except SQLAlchemyError as e:
            logger.error(f"Could not title thread {thread_id} as '{title}': {e}")
            await _reload_after_rollback(db, user_id, thread, user_message)

    responder = responder or generators.generate_chat_reply
    ai_failed = False
    try:
        reply = generators.extract_reply_text(await responder(content, thread.id, concise_mode))
    except GenerationError as e:
        logger.error(f"Chat responder failed for thread {thread.id}: {e}")
        reply = generators.CHAT_APOLOGY
        ai_failed = True

    try:
        ai_message = await crud_chat.create_message(thread.id, AI_SENDER, reply, db)
        await crud_chat.touch_thread(thread, db)
    except SQLAlchemyError as e:
        raise await _chat_store_failure(db, user_id, "send_message", "Error saving the reply", e)
    publish_message(ai_message, feed)

    return SendResult(thread=thread, user_message=user_message, ai_message=ai_message, ai_failed=ai_failed)


# ────────────────────────────────────────────────────────────────────────────────
# ACTIVE THREAD VIEW
# ────────────────────────────────────────────────────────────────────────────────
class ChatSession:
    """
    The active thread of one user. Realtime inserts are queued by the change
    feed and applied by a single consumer task; messages are kept once per id.
    """

    def __init__(
        self,
        user_id: uuid.UUID,
        session_factory=AsyncSessionLocal,
        feed: ChangeFeed = change_feed,
        on_message: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None,
    ):
        self.user_id = user_id
        self.session_factory = session_factory
        self.feed = feed
        self.on_message = on_message
        self.thread_id: Optional[uuid.UUID] = None
        self.messages: List[Dict[str, Any]] = []
        self._ids = set()
        self._subscription: Optional[FeedSubscription] = None
        self._consumer: Optional[asyncio.Task] = None

    async def open_thread(self, thread_id: uuid.UUID) -> bool:
        """Switch to a thread: release the old subscription, load history, subscribe."""
        await self._release()
        async with self.session_factory() as db:
            thread = await crud_chat.get_thread(thread_id, self.user_id, db)
            if thread is None:
                return False
            history = await crud_chat.get_messages(thread_id, db)

        self.thread_id = thread_id
        self.messages = []
        self._ids = set()
        for message in history:
            self.append(message.to_event())

        self._subscription = self.feed.subscribe(MESSAGES_TABLE, thread_id=thread_id)
        self._consumer = asyncio.create_task(self._consume(self._subscription))
        return True

    def append(self, message: Dict[str, Any]) -> bool:
        """Add a message unless one with the same id is already shown."""
        message_id = str(message.get("id"))
        if message_id in self._ids:
            return False
        self._ids.add(message_id)
        self.messages.append(message)
        return True

    async def _consume(self, subscription: FeedSubscription) -> None:
        while True:
            event = await subscription.get()
            try:
                if self.append(event["new"]) and self.on_message is not None:
                    await self.on_message(event["new"])
            except Exception as e:
                # The message stays applied; only the delivery failed
                logger.error(f"Delivering message {event['new'].get('id')} in thread {self.thread_id} failed: {e}")
            finally:
                subscription.queue.task_done()

    async def settle(self) -> None:
        """Wait until every queued realtime event has been applied."""
        if self._subscription is not None:
            await self._subscription.queue.join()

    async def send(self, content: str, concise_mode: bool = False,
                   responder: Optional[Responder] = None) -> Optional[SendResult]:
        if self.thread_id is None:
            raise RuntimeError("No thread is open")
        async with self.session_factory() as db:
            result = await send_message(
                db, self.user_id, self.thread_id, content, concise_mode, responder=responder, feed=self.feed
            )
        if result is not None:
            # Optimistic append; the realtime echo of the same ids is ignored
            for message in (result.user_message, result.ai_message):
                event = message.to_event()
                if self.append(event) and self.on_message is not None:
                    await self.on_message(event)
        return result

    async def _release(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Chat consumer for thread {self.thread_id} ended with an error: {e}")
            self._consumer = None

    async def close(self) -> None:
        await self._release()
        self.thread_id = None
