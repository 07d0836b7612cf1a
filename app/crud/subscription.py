# app/crud/subscription.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from datetime import date, datetime, timedelta
from app.models.subscription import Subscription, SubscriptionPlan, UsageRecord
from typing import Optional
import uuid

PLAN_DURATIONS = {
    SubscriptionPlan.monthly: timedelta(days=30),
    SubscriptionPlan.annual: timedelta(days=365),
}

async def get_subscription(user_id: uuid.UUID, db: AsyncSession) -> Optional[Subscription]:
    result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
    return result.scalar_one_or_none()

async def set_plan(user_id: uuid.UUID, plan: SubscriptionPlan, db: AsyncSession) -> Subscription:
    """Switch a user's plan, starting a fresh period now"""
    now = datetime.utcnow()
    duration = PLAN_DURATIONS.get(plan)
    expires_at = now + duration if duration else None

    subscription = await get_subscription(user_id, db)
    if subscription is None:
        subscription = Subscription(user_id=user_id)
        db.add(subscription)
    subscription.plan = plan
    subscription.started_at = now
    subscription.expires_at = expires_at
    subscription.active = True
    await db.commit()
    await db.refresh(subscription)
    return subscription

async def get_usage_for_day(user_id: uuid.UUID, db: AsyncSession, day: Optional[date] = None) -> Optional[UsageRecord]:
    day = day or date.today()
    result = await db.execute(
        select(UsageRecord).where(UsageRecord.user_id == user_id, UsageRecord.date == day)
    )
    return result.scalar_one_or_none()

async def increment_usage(user_id: uuid.UUID, db: AsyncSession, goals: int = 0, messages: int = 0) -> UsageRecord:
    """Add to today's counters, creating the row on first use"""
    record = await get_usage_for_day(user_id, db)
    if record is None:
        record = UsageRecord(user_id=user_id, date=date.today(), goals_created=0, messages_sent=0)
        db.add(record)
    record.goals_created += goals
    record.messages_sent += messages
    await db.commit()
    await db.refresh(record)
    return record
