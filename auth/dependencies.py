"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Authenticated calls carry the access token as an `Authorization: Bearer
<token>` header. Refresh tokens are never accepted here -- they only travel
in the bodies of /auth/refresh and /auth/logout.

get_current_user() raises Unauthorized / InvalidToken.
require_admin() wraps get_current_user() and raises Forbidden if not admin.

Layer rule: no imports from api/ or plans/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Role, User
from auth.tokens import decode_access_token
from core.errors import Forbidden, InvalidToken, Unauthorized


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_user(request: Request) -> User:
    """Require authentication.

    No header -> Unauthorized. A header whose token is expired, forged or
    names a deleted user -> InvalidToken, so clients know to refresh.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise Unauthorized()
    payload = decode_access_token(token)
    user = request.app.state.user_store.get_by_id(payload["user_id"])
    if user is None:
        raise InvalidToken()
    return user


def require_admin(request: Request) -> User:
    """Require the ADMIN role. 401 if unauthenticated, 403 if authenticated but not admin."""
    user = get_current_user(request)
    if user.role != Role.ADMIN.value:
        raise Forbidden("Admin access required.")
    return user
