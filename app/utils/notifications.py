# app/utils/notifications.py
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.notification import Notification
from app.schemas.notification import NotificationCreate
from app.crud.notification import create_notification
from app.utils.realtime import change_feed
import uuid
import logging

logger = logging.getLogger(__name__)

# status is one of 'info', 'success', 'error', 'alert'; type names the area ('goal', 'task', 'chat', 'image')
async def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    message: str,
    type: str,
    status: str = "info",
    goal_id: Optional[uuid.UUID] = None,
) -> Optional[Notification]:
    """
    Persist a user-facing notification and push it on the change feed.

    A failure to record the notification is logged; it never replaces the
    error that is being reported.
    """
    notification = NotificationCreate(
        user_id=user_id,
        title=title[:100],
        message=message[:500],
        type=type,
        status=status,
        goal_id=goal_id,
    )
    try:
        notification_obj = await create_notification(db, notification)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Could not record notification '{title}' for user {user_id}: {e}")
        return None

    send_realtime_notification(notification_obj)
    return notification_obj

async def notify_error(db: AsyncSession, user_id: uuid.UUID, title: str, message: str, type: str, goal_id: Optional[uuid.UUID] = None):
    return await notify(db, user_id, title, message, type, status="error", goal_id=goal_id)

async def notify_success(db: AsyncSession, user_id: uuid.UUID, title: str, message: str, type: str, goal_id: Optional[uuid.UUID] = None):
    return await notify(db, user_id, title, message, type, status="success", goal_id=goal_id)

async def notify_goal_completed(db: AsyncSession, user_id: uuid.UUID, goal_id: uuid.UUID, goal_title: str):
    return await notify_success(
        db,
        user_id,
        "Goal Completed!",
        f"Congratulations! You've completed every task for \"{goal_title}\".",
        "goal",
        goal_id=goal_id,
    )

def send_realtime_notification(notification: Notification) -> int:
    """Publish a stored notification to the user's live subscribers"""
    row = notification.to_event()
    row["user_id"] = str(notification.user_id)
    return change_feed.publish("notifications", row)
