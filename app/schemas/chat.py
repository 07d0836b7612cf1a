# app/schemas/chat.py
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime
import uuid

class ChatThreadCreate(BaseModel):
    title: Optional[str] = None

class ChatThreadRename(BaseModel):
    title: str

class ChatThreadRead(BaseModel):
    id: uuid.UUID
    title: str
    renamed: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class ChatMessageCreate(BaseModel):
    content: str = Field(..., min_length=1)
    concise_mode: bool = False

class ChatMessageRead(BaseModel):
    id: uuid.UUID
    thread_id: uuid.UUID
    sender: str
    content: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SendMessageResponse(BaseModel):
    user_message: ChatMessageRead
    ai_message: ChatMessageRead
    ai_failed: bool = False
    thread: ChatThreadRead

class ChatHistory(BaseModel):
    thread: ChatThreadRead
    messages: List[ChatMessageRead]
