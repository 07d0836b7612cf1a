# app/api/v1/routes/users.py
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi_users import BaseUserManager, exceptions

from app.core.auth import get_user_manager, User, UserRead, UserUpdate
from app.api.deps import get_current_user

router = APIRouter(tags=["User Management"])

# 1) GET /users/me
@router.get("/me", response_model=UserRead)
async def read_own_profile(user: User = Depends(get_current_user)):
    """Get current user's profile"""
    return user

# 2) PATCH /users/me
@router.patch("/me", response_model=UserRead)
async def update_own_profile(
    user_update: UserUpdate,
    request: Request,
    user: User = Depends(get_current_user),
    user_manager: BaseUserManager[User, uuid.UUID] = Depends(get_user_manager),
):
    """Update current user's profile"""
    if not user_update.model_dump(exclude_unset=True):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields provided for update"
        )
    try:
        return await user_manager.update(user_update, user, safe=True, request=request)
    except exceptions.UserAlreadyExists:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")
    except exceptions.InvalidPasswordException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)
