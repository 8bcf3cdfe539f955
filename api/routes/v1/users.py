"""
api/routes/v1/users.py -- User administration endpoints.

Routes:
  GET /api/v1/users   -- list all users (manage_users capability)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserListResponse, UserResponse
from auth.dependencies import require_user_management
from auth.models import User

router = APIRouter()


@router.get("/users", response_model=UserListResponse)
def list_users(request: Request, current_user: User = Depends(require_user_management)) -> UserListResponse:
    users = request.app.state.user_store.list_users()
    return UserListResponse(users=[UserResponse.from_user(u) for u in users])
