from datetime import datetime, timedelta

import pytest

from app.core.exceptions import PlanLimitReached
from app.crud import subscription as crud_subscription
from app.models.goal import Goal
from app.models.subscription import Subscription, SubscriptionPlan
from app.services import limits


async def _add_goal(db, user, completed=False):
    db.add(Goal(user_id=user.id, title="Goal", completed=completed, image_loading=False))
    await db.commit()


async def test_new_users_are_on_the_free_plan(db, user):
    assert await limits.get_plan(user.id, db) == SubscriptionPlan.free
    usage = await limits.get_usage(user.id, db)
    assert usage.goals_limit == 1
    assert usage.messages_limit == 5
    assert not usage.goal_limit_reached


async def test_free_plan_blocks_a_second_active_goal(db, user):
    await _add_goal(db, user)

    with pytest.raises(PlanLimitReached) as exc_info:
        await limits.ensure_can_create_goal(user.id, db)

    assert exc_info.value.usage_type == "goal"
    assert exc_info.value.limit == 1
    assert "upgrade" in exc_info.value.prompt


async def test_completed_goals_do_not_count(db, user):
    await _add_goal(db, user, completed=True)
    await limits.ensure_can_create_goal(user.id, db)


async def test_message_limit_counts_todays_messages(db, user):
    await crud_subscription.increment_usage(user.id, db, messages=4)
    await limits.ensure_can_send_message(user.id, db)

    await crud_subscription.increment_usage(user.id, db, messages=1)
    with pytest.raises(PlanLimitReached) as exc_info:
        await limits.ensure_can_send_message(user.id, db)
    assert exc_info.value.usage_type == "message"


async def test_annual_plan_is_unlimited(db, user):
    await crud_subscription.set_plan(user.id, SubscriptionPlan.annual, db)
    for _ in range(3):
        await _add_goal(db, user)
    await crud_subscription.increment_usage(user.id, db, messages=500)

    usage = await limits.ensure_can_create_goal(user.id, db)
    await limits.ensure_can_send_message(user.id, db)

    assert usage.goals_limit is None
    report = limits.usage_report(usage)
    assert report.goal_limit_percentage == 0
    assert not report.goal_limit_reached


async def test_expired_subscription_falls_back_to_free(db, user):
    db.add(Subscription(
        user_id=user.id,
        plan=SubscriptionPlan.monthly,
        started_at=datetime.utcnow() - timedelta(days=40),
        expires_at=datetime.utcnow() - timedelta(days=10),
        active=True,
    ))
    await db.commit()

    assert await limits.get_plan(user.id, db) == SubscriptionPlan.free


async def test_usage_report_caps_percentages(db, user):
    await crud_subscription.set_plan(user.id, SubscriptionPlan.monthly, db)
    await crud_subscription.increment_usage(user.id, db, messages=30)
    await _add_goal(db, user)

    report = limits.usage_report(await limits.get_usage(user.id, db))

    assert report.plan == "monthly"
    assert report.message_limit_percentage == 100
    assert report.message_limit_reached
    assert report.goal_limit_percentage == 20
