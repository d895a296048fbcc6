"""
api/routes/v1/auth.py -- Authentication session REST endpoints.

Routes:
  POST /api/v1/auth/signup   -- create account; returns user + token pair (201)
  POST /api/v1/auth/login    -- password login; returns user + token pair
  POST /api/v1/auth/refresh  -- rotate a refresh token; returns a new pair
  POST /api/v1/auth/logout   -- revoke a refresh token; always 200
  GET  /api/v1/auth/me       -- current user profile (requires auth)
  PUT  /api/v1/auth/me       -- update name / avatar (requires auth)

Security:
  signup, login and refresh are rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries tokens.
  Failed logins return the same invalid_credentials error for unknown email
  and wrong password.
  Logout answers 200 whether or not the token existed, so it cannot be used
  to probe which refresh tokens are live.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    ProfileUpdate,
    RefreshTokenRequest,
    SignupRequest,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.models import TokenPair, User
from auth.passwords import authenticate_user, hash_password
from auth.store import SessionStore, UserStore
from auth.tokens import issue_token_pair, rotate_refresh_token
from core.config import get_settings
from core.errors import Conflict, FieldError, InvalidCredentials, NotFound

logger = logging.getLogger("cropcase.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/signup:   public, rate-limited
# - POST /api/v1/auth/login:    public, rate-limited
# - POST /api/v1/auth/refresh:  public (the refresh token is the credential), rate-limited
# - POST /api/v1/auth/logout:   public (the refresh token is the credential)
# - GET  /api/v1/auth/me:       requires auth (get_current_user)
# - PUT  /api/v1/auth/me:       requires auth (get_current_user)
router = APIRouter()


def _auth_response(status_code: int, message: str, user: User, pair: TokenPair) -> JSONResponse:
    body = AuthResponse(
        message=message,
        user=UserResponse.from_user(user),
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=_settings.access_token_expire_seconds,
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _email_taken() -> Conflict:
    return Conflict(
        "An account with this email already exists.",
        fields=[FieldError("email", "Email is already registered.")],
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)  # BELOW @router: FastAPI must register the limited wrapper
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create a local account and start a session.

    The pre-check gives the common duplicate case a clean Conflict without
    spending a bcrypt hash; the IntegrityError catch covers the race where two
    signups for the same email pass the pre-check together.
    """
    users: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store

    if users.get_by_email(body.email) is not None:
        raise _email_taken()

    new_user = User(email=body.email, name=body.name, hashed_password=hash_password(body.password))
    try:
        user_id = users.create_user(new_user)
    except IntegrityError as exc:
        raise _email_taken() from exc

    user = users.get_by_id(user_id)
    pair = issue_token_pair(sessions, user)
    logger.info("Account created: user_id=%s", user.id)
    return _auth_response(201, "Account created successfully.", user, pair)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Uses authenticate_user() which includes timing equalization. Do NOT
    inline get_by_email() + verify_password() -- that re-introduces the
    timing attack.
    """
    users: UserStore = request.app.state.user_store
    sessions: SessionStore = request.app.state.session_store

    user = authenticate_user(users, body.email, body.password)
    if user is None:
        logger.info("Failed login attempt")
        raise InvalidCredentials()

    users.update_last_login(user.id)
    user = users.get_by_id(user.id) or user
    pair = issue_token_pair(sessions, user)
    logger.info("Login: user_id=%s", user.id)
    return _auth_response(200, "Login successful.", user, pair)


@router.post("/auth/refresh", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT)
def refresh(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is consumed."""
    pair, user = rotate_refresh_token(
        request.app.state.session_store,
        request.app.state.user_store,
        body.refresh_token,
    )
    return _auth_response(200, "Token refreshed successfully.", user, pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshTokenRequest) -> MessageResponse:
    """Revoke the given refresh token. Idempotent."""
    sessions: SessionStore = request.app.state.session_store
    if sessions.delete(body.refresh_token):
        logger.info("Refresh token revoked on logout")
    return MessageResponse(message="Logged out successfully.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the profile of the currently authenticated user."""
    return UserResponse.from_user(current_user)


@router.put("/auth/me", response_model=ProfileResponse)
def update_me(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> ProfileResponse:
    """Update the caller's own name and/or avatar."""
    users: UserStore = request.app.state.user_store
    users.update_profile(current_user.id, **body.model_dump(exclude_none=True))
    user = users.get_by_id(current_user.id)
    if user is None:
        raise NotFound("User not found.")
    return ProfileResponse(message="Profile updated successfully.", user=UserResponse.from_user(user))
