# app/api/v1/routes/usage.py
from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user
from app.core.auth import User
from app.core.database import get_async_session
from app.core.exceptions import StoreError
from app.crud import subscription as crud_subscription
from app.models.subscription import SubscriptionPlan
from app.schemas.subscription import SubscriptionRead, SubscriptionUpdate, UsageResponse
from app.services import limits

router = APIRouter(tags=["Subscription"])

@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    """Today's counters against the limits of the user's plan."""
    usage = await limits.get_usage(user.id, db)
    return limits.usage_report(usage)

@router.get("/subscription", response_model=SubscriptionRead)
async def get_subscription(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    subscription = await crud_subscription.get_subscription(user.id, db)
    if subscription is None:
        # Every account starts on the free plan
        subscription = await crud_subscription.set_plan(user.id, SubscriptionPlan.free, db)
    return subscription

@router.put("/subscription", response_model=SubscriptionRead)
async def update_subscription(
    update: SubscriptionUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(get_current_user),
):
    """Switch plans. Monthly runs 30 days, annual 365, free never expires."""
    try:
        return await crud_subscription.set_plan(user.id, SubscriptionPlan(update.plan), db)
    except SQLAlchemyError as e:
        await db.rollback()
        raise StoreError("update_subscription", str(e)) from e
