# app/api/v1/routes/chat.py
from typing import List, Optional
import uuid
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.auth import User
from app.core.database import get_async_session
from app.core.exceptions import PlanLimitReached, StoreError
from app.crud import chat as crud_chat
from app.schemas.chat import (
    ChatHistory,
    ChatMessageCreate,
    ChatMessageRead,
    ChatThreadCreate,
    ChatThreadRead,
    ChatThreadRename,
    SendMessageResponse,
)
from app.services import chat_service
from app.services.chat_service import ChatSession

router = APIRouter(prefix="/chat", tags=["Chat"])
logger = logging.getLogger(__name__)

THREAD_NOT_FOUND = "Chat thread not found"

@router.get("/threads", response_model=List[ChatThreadRead])
async def list_threads(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(deps.get_current_user),
):
    return await crud_chat.get_threads_for_user(user.id, db)

@router.post("/threads", response_model=ChatThreadRead, status_code=status.HTTP_201_CREATED)
async def create_thread(
    thread_in: ChatThreadCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(deps.get_current_user),
):
    """Create a thread; without a title it is named after today's date."""
    return await chat_service.create_thread(db, user.id, thread_in.title)

@router.patch("/threads/{thread_id}", response_model=ChatThreadRead)
async def rename_thread(
    thread_id: uuid.UUID,
    rename: ChatThreadRename,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(deps.get_current_user),
):
    thread = await chat_service.rename_thread(db, user.id, thread_id, rename.title)
    if thread is None:
        raise HTTPException(status_code=404, detail=THREAD_NOT_FOUND)
    return thread

@router.delete("/threads/{thread_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_thread(
    thread_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(deps.get_current_user),
):
    """Delete a thread together with all of its messages."""
    if not await chat_service.delete_thread(db, user.id, thread_id):
        raise HTTPException(status_code=404, detail=THREAD_NOT_FOUND)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.get("/threads/{thread_id}/messages", response_model=ChatHistory)
async def get_thread_messages(
    thread_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(deps.get_current_user),
):
    thread = await crud_chat.get_thread(thread_id, user.id, db)
    if thread is None:
        raise HTTPException(status_code=404, detail=THREAD_NOT_FOUND)
    messages = await crud_chat.get_messages(thread_id, db)
    return ChatHistory(thread=thread, messages=messages)

@router.post("/threads/{thread_id}/messages", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    thread_id: uuid.UUID,
    message_in: ChatMessageCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(deps.get_current_user),
):
    """
    Send a message and get the assistant's reply. If the assistant fails, a
    fixed apology is stored as its reply and `ai_failed` is true.
    """
    try:
        result = await chat_service.send_message(db, user.id, thread_id, message_in.content, message_in.concise_mode)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if result is None:
        raise HTTPException(status_code=404, detail=THREAD_NOT_FOUND)
    return SendMessageResponse(
        user_message=result.user_message,
        ai_message=result.ai_message,
        ai_failed=result.ai_failed,
        thread=result.thread,
    )

@router.websocket("/ws")
async def chat_websocket(
    websocket: WebSocket,
    token: str = Query(...),
    thread_id: Optional[uuid.UUID] = Query(None),
):
    """
    Live chat for one thread. Client frames:
    `{"action": "open", "thread_id": ...}` and
    `{"action": "send", "content": ..., "concise_mode": false}`.
    """
    session_factory = websocket.app.state.session_factory
    async with session_factory() as db:
        try:
            user = await deps.get_current_user_from_token(token, db)
        except HTTPException:
            await websocket.close(code=4001, reason="Authentication failed")
            return

    await websocket.accept()

    async def forward(message: dict) -> None:
        await websocket.send_json({"type": "message", "data": message})

    session = ChatSession(user.id, session_factory=session_factory, on_message=forward)

    async def open_thread(target) -> None:
        try:
            opened = await session.open_thread(uuid.UUID(str(target)))
        except ValueError:
            opened = False
        if not opened:
            await websocket.send_json({"type": "error", "detail": THREAD_NOT_FOUND})
            return
        await websocket.send_json({
            "type": "thread",
            "data": {"id": str(session.thread_id), "messages": session.messages},
        })

    try:
        if thread_id is not None:
            await open_thread(thread_id)

        while True:
            data = await websocket.receive_json()
            action = data.get("action")
            if action == "open":
                await open_thread(data.get("thread_id"))
            elif action == "send":
                if session.thread_id is None:
                    await websocket.send_json({"type": "error", "detail": "No thread is open"})
                    continue
                try:
                    await session.send(data.get("content", ""), bool(data.get("concise_mode", False)))
                except PlanLimitReached as e:
                    await websocket.send_json({"type": "limit", "detail": e.prompt})
                except (StoreError, ValueError) as e:
                    await websocket.send_json({"type": "error", "detail": str(e)})
            else:
                await websocket.send_json({"type": "error", "detail": f"Unknown action: {action}"})
    except WebSocketDisconnect:
        logger.info(f"Chat socket closed for user {user.id}")
    finally:
        await session.close()
