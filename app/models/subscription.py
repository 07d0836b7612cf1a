# app/models/subscription.py
import enum
import uuid
from datetime import datetime, date
from sqlalchemy import Column, Integer, Date, DateTime, ForeignKey, Boolean, Enum, UniqueConstraint, Uuid
from app.core.database import Base

class SubscriptionPlan(str, enum.Enum):
    free = "free"
    monthly = "monthly"
    annual = "annual"

class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    plan = Column(Enum(SubscriptionPlan, name="subscription_plan"), nullable=False, default=SubscriptionPlan.free)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

class UsageRecord(Base):
    __tablename__ = "usage_tracking"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_usage_user_date"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, default=date.today, nullable=False)
    goals_created = Column(Integer, default=0, nullable=False)
    messages_sent = Column(Integer, default=0, nullable=False)
