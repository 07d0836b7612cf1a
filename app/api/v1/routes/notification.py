# app/api/v1/routes/notification.py
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from app.schemas.notification import NotificationRead
from app.crud import notification as crud_notification
from app.api import deps
from uuid import UUID
from app.core.database import get_async_session
from app.core.auth import User
from app.utils.realtime import change_feed
import asyncio
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/", response_model=List[NotificationRead])
async def get_notifications(
    unread_only: bool = Query(False, description="Filter to only unread notifications"),
    goal_id: Optional[UUID] = Query(None, description="Only notifications about this goal"),
    limit: int = Query(50, description="Maximum number of notifications to return"),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(deps.get_current_user)
):
    """Get notifications for the current user with optional filtering"""
    return await crud_notification.get_notifications_for_user(
        db,
        user_id=current_user.id,
        unread_only=unread_only,
        goal_id=goal_id,
        limit=limit
    )

@router.get("/unread-count", response_model=int)
async def get_unread_count(
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(deps.get_current_user)
):
    """Get count of unread notifications for the current user"""
    return await crud_notification.get_unread_count(db, current_user.id)

@router.post("/read_all", response_model=int)
async def mark_all_notifications_as_read(
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(deps.get_current_user)
):
    """Mark all notifications for the current user as read"""
    return await crud_notification.mark_all_notifications_as_read(db, current_user.id)

@router.get("/{notification_id}", response_model=NotificationRead)
async def get_notification(
    notification_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(deps.get_current_user)
):
    notification = await crud_notification.get_notification_by_id(db, notification_id)
    if not notification or notification.user_id != current_user.id:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification

@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_notification_as_read(
    notification_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(deps.get_current_user)
):
    notification = await crud_notification.mark_notification_as_read(db, notification_id, current_user.id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification

@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(deps.get_current_user)
):
    if not await crud_notification.delete_notification(db, notification_id, current_user.id):
        raise HTTPException(status_code=404, detail="Notification not found")

@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
):
    """WebSocket endpoint for real-time notifications"""
    async with websocket.app.state.session_factory() as db:
        try:
            user = await deps.get_current_user_from_token(token, db)
        except HTTPException:
            await websocket.close(code=4001, reason="Authentication failed")
            return

    await websocket.accept()
    subscription = change_feed.subscribe("notifications", user_id=user.id)

    async def push():
        async for event in subscription:
            await websocket.send_json({"type": "notification", "data": event["new"]})

    pusher = asyncio.create_task(push())
    try:
        # Keep reading so a client disconnect is noticed
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Notification socket closed for user {user.id}")
    finally:
        subscription.close()
        pusher.cancel()
