# app/schemas/subscription.py
from typing import Optional, Literal
from pydantic import BaseModel
from datetime import datetime
import uuid

class SubscriptionRead(BaseModel):
    id: uuid.UUID
    plan: str
    started_at: datetime
    expires_at: Optional[datetime] = None
    active: bool

    class Config:
        from_attributes = True

class SubscriptionUpdate(BaseModel):
    plan: Literal["free", "monthly", "annual"]

class UsageData(BaseModel):
    plan: str
    daily_goals_created: int
    daily_messages_sent: int
    total_goals: int
    # None means unlimited
    goals_limit: Optional[int]
    messages_limit: Optional[int]

    @property
    def goal_limit_reached(self) -> bool:
        return self.goals_limit is not None and self.total_goals >= self.goals_limit

    @property
    def message_limit_reached(self) -> bool:
        return self.messages_limit is not None and self.daily_messages_sent >= self.messages_limit

class UsageResponse(BaseModel):
    plan: str
    daily_goals_created: int
    daily_messages_sent: int
    total_goals: int
    goals_limit: Optional[int]
    messages_limit: Optional[int]
    goal_limit_reached: bool
    message_limit_reached: bool
    goal_limit_percentage: int
    message_limit_percentage: int
