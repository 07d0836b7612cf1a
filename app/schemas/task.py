# app/schemas/task.py
from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime
import uuid

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    article_content: Optional[str] = None

class TaskStatusUpdate(BaseModel):
    completed: bool

class TaskRead(BaseModel):
    id: uuid.UUID
    goal_id: uuid.UUID
    title: str
    description: Optional[str] = None
    article_content: Optional[str] = None
    order_number: int
    completed: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
