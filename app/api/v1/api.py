from fastapi import APIRouter

from app.api.v1.routes import users, auth, goals, tasks, chat, usage, notification, functions

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(users.router, prefix="/users", tags=["User Management"])
api_router.include_router(goals.router)
api_router.include_router(tasks.router)
api_router.include_router(chat.router)
api_router.include_router(usage.router)
api_router.include_router(functions.router)
api_router.include_router(notification.router, prefix="/notification", tags=["Notifications"])
