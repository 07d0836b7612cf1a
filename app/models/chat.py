# app/models/chat.py
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Boolean, Uuid
from sqlalchemy.orm import relationship
from app.core.database import Base

# Sender value used for assistant turns
AI_SENDER = "ai"

class ChatThread(Base):
    __tablename__ = "chat_threads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    # Once renamed by the user the title is no longer derived from messages
    renamed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="chat_threads")

class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # No ON DELETE: messages must be removed before their thread
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("chat_threads.id"), nullable=False, index=True)
    sender = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def to_event(self) -> dict:
        return {
            "id": str(self.id),
            "thread_id": str(self.thread_id),
            "sender": self.sender,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
