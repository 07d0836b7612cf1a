# app/schemas/goal.py
from typing import Optional
from pydantic import BaseModel, Field
from datetime import date, datetime
import uuid

class GoalCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    target_date: Optional[date] = None

class GoalUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    target_date: Optional[date] = None
    completed: Optional[bool] = None
    task_summary: Optional[str] = None

class GoalRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    description: Optional[str] = None
    target_date: Optional[date] = None
    completed: bool = False
    task_summary: Optional[str] = None
    image_url: Optional[str] = None
    image_loading: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class GoalState(GoalRead):
    """A goal as held in a user's session view state."""
    # Local only, never persisted
    image_error: bool = False
    image_refresh: bool = False

class GoalProgressResponse(BaseModel):
    goal_id: uuid.UUID
    total_tasks: int
    completed_tasks: int
    progress_percentage: int
    summary: Optional[str] = None

class ImageViewResponse(BaseModel):
    goal_id: uuid.UUID
    state: str
    display_url: Optional[str]
    is_loading: bool
    has_error: bool
    has_loaded: bool
    attempts: int
