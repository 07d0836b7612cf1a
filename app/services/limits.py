# app/services/limits.py
"""
Plan limits. Goal creation is capped by the number of active goals, chat
by the number of messages sent today.
"""
import logging
import uuid
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import PlanLimitReached
from app.crud import goal as crud_goal
from app.crud import subscription as crud_subscription
from app.models.subscription import SubscriptionPlan
from app.schemas.subscription import UsageData, UsageResponse

logger = logging.getLogger(__name__)


def plan_limits(plan: SubscriptionPlan) -> Dict[str, Optional[int]]:
    if plan == SubscriptionPlan.annual:
        return {"goals": settings.ANNUAL_GOAL_LIMIT, "messages": settings.ANNUAL_MESSAGE_LIMIT}
    if plan == SubscriptionPlan.monthly:
        return {"goals": settings.MONTHLY_GOAL_LIMIT, "messages": settings.MONTHLY_MESSAGE_LIMIT}
    return {"goals": settings.FREE_GOAL_LIMIT, "messages": settings.FREE_MESSAGE_LIMIT}


async def get_plan(user_id: uuid.UUID, db: AsyncSession) -> SubscriptionPlan:
    """Effective plan: inactive or expired subscriptions fall back to free."""
    subscription = await crud_subscription.get_subscription(user_id, db)
    if subscription is None or not subscription.active:
        return SubscriptionPlan.free
    if subscription.expires_at is not None and subscription.expires_at < datetime.utcnow():
        logger.info(f"Subscription of user {user_id} expired on {subscription.expires_at}")
        return SubscriptionPlan.free
    return SubscriptionPlan(subscription.plan)


async def get_usage(user_id: uuid.UUID, db: AsyncSession) -> UsageData:
    plan = await get_plan(user_id, db)
    limits = plan_limits(plan)
    record = await crud_subscription.get_usage_for_day(user_id, db)
    total_goals = await crud_goal.count_active_goals(user_id, db)
    return UsageData(
        plan=plan.value,
        daily_goals_created=record.goals_created if record else 0,
        daily_messages_sent=record.messages_sent if record else 0,
        total_goals=total_goals,
        goals_limit=limits["goals"],
        messages_limit=limits["messages"],
    )


def _percentage(used: int, limit: Optional[int]) -> int:
    if not limit:
        return 0
    return min(100, round(used / limit * 100))


def usage_report(usage: UsageData) -> UsageResponse:
    return UsageResponse(
        **usage.model_dump(),
        goal_limit_reached=usage.goal_limit_reached,
        message_limit_reached=usage.message_limit_reached,
        goal_limit_percentage=_percentage(usage.total_goals, usage.goals_limit),
        message_limit_percentage=_percentage(usage.daily_messages_sent, usage.messages_limit),
    )


async def ensure_can_create_goal(user_id: uuid.UUID, db: AsyncSession) -> UsageData:
    usage = await get_usage(user_id, db)
    if usage.goal_limit_reached:
        raise PlanLimitReached("goal", usage.goals_limit, usage.plan)
    return usage


async def ensure_can_send_message(user_id: uuid.UUID, db: AsyncSession) -> UsageData:
    usage = await get_usage(user_id, db)
    if usage.message_limit_reached:
        raise PlanLimitReached("message", usage.messages_limit, usage.plan)
    return usage
