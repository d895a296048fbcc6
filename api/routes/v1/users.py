"""
api/routes/v1/users.py -- Admin user listing.

Routes:
  GET /api/v1/users -- all users, newest first (admin only)

Role changes are an operator task (main.py set-role), not an API
surface.
"""

from fastapi import APIRouter, Depends, Request

from api.models import UserResponse
from auth.dependencies import require_admin
from auth.models import User

router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, admin: User = Depends(require_admin)) -> list[UserResponse]:
    return [UserResponse.from_user(u) for u in request.app.state.user_store.list_users()]
