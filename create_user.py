#!/usr/bin/env python3
"""
Standalone script to create a user and assign a subscription plan
Usage: python create_user.py
"""

import asyncio
from app.core.database import AsyncSessionLocal, create_db_and_tables, engine
from app.core.auth import User, UserManager, UserCreate
from app.crud import subscription as crud_subscription
from app.models.subscription import SubscriptionPlan
from fastapi_users.db import SQLAlchemyUserDatabase
from fastapi_users.exceptions import InvalidPasswordException
from sqlalchemy.exc import SQLAlchemyError

async def create_user():
    print("Creating user...")

    email = input("Enter email: ") or "admin@example.com"
    password = input("Enter password: ") or "admin123"
    full_name = input("Enter full name (optional): ") or None
    plan_name = input("Plan [free/monthly/annual] (default free): ") or "free"
    superuser = (input("Superuser? [y/N]: ") or "n").lower().startswith("y")

    try:
        plan = SubscriptionPlan(plan_name)
    except ValueError:
        print(f"Unknown plan {plan_name!r}")
        return

    await create_db_and_tables()

    async with AsyncSessionLocal() as session:
        try:
            user_manager = UserManager(SQLAlchemyUserDatabase(session, User))

            existing_user = await user_manager.user_db.get_by_email(email)
            if existing_user:
                print(f"User with email {email} already exists!")
                return

            user = await user_manager.create(UserCreate(
                email=email,
                password=password,
                full_name=full_name,
                is_superuser=superuser,
                is_verified=True,
            ))
            subscription = await crud_subscription.set_plan(user.id, plan, session)

            print(f"✅ User created successfully!")
            print(f"📧 Email: {user.email}")
            print(f"🔑 ID: {user.id}")
            print(f"💳 Plan: {subscription.plan.value} (expires {subscription.expires_at or 'never'})")

        except (SQLAlchemyError, InvalidPasswordException) as e:
            print(f"❌ Error creating user: {e}")
        finally:
            await engine.dispose()

if __name__ == "__main__":
    asyncio.run(create_user())
