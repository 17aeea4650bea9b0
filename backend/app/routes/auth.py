"""Authentication routes: register, login, logout, current user."""

import sqlite3
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials

from ..auth import (
    CurrentUser,
    generate_token,
    hash_password,
    hash_token,
    security,
    verify_password,
)
from ..config import Settings, get_settings
from ..database import (
    Database,
    create_token,
    create_user,
    get_user_by_username,
    purge_expired_tokens,
    revoke_token,
)
from ..logging_config import get_logger, log_auth_event
from ..models import AuthResponse, LoginRequest, MessageResponse, RegisterRequest, UserInfo, UserResponse
from ..rate_limit import auth_rate_limit, limiter

logger = get_logger("taakl.auth")
router = APIRouter(prefix="/api", tags=["auth"])


def _user_info(user: dict) -> UserInfo:
    return UserInfo(id=user["id"], uuid=user["uuid"], username=user["username"], email=user["email"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(auth_rate_limit)
async def register(
    request: Request,
    register_request: RegisterRequest,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """
    Register a new user account.

    Returns the user and a bearer token valid for ``token_expiry_days``.
    """
    username = register_request.username
    logger.info(f"Registration attempt for user: {username}")

    if await get_user_by_username(db, username) is not None:
        log_auth_event("register", username, False, "username taken")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")

    password_hash = hash_password(register_request.password, rounds=settings.bcrypt_rounds)
    try:
        user = await create_user(db, username, password_hash, email=register_request.email)
    except sqlite3.IntegrityError:
        # Lost a race with a concurrent registration of the same name
        log_auth_event("register", username, False, "username taken")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")

    token = generate_token()
    await create_token(db, user["id"], hash_token(token), settings.token_expiry_days)

    log_auth_event("register", username, True)
    return AuthResponse(user=_user_info(user), token=token)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(auth_rate_limit)
async def login(
    request: Request,
    login_request: LoginRequest,
    db: Database,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Log in with username and password; returns a new bearer token."""
    user = await get_user_by_username(db, login_request.username)
    if user is None or not verify_password(login_request.password, user["password_hash"]):
        log_auth_event("login", login_request.username, False, "bad credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    await purge_expired_tokens(db)
    token = generate_token()
    await create_token(db, user["id"], hash_token(token), settings.token_expiry_days)

    log_auth_event("login", login_request.username, True)
    return AuthResponse(user=_user_info(user), token=token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Database,
):
    """Invalidate the presented token, if any. Always succeeds."""
    if credentials is not None and credentials.credentials:
        revoked = await revoke_token(db, hash_token(credentials.credentials))
        logger.debug(f"Logout revoked={revoked}")
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
async def me(auth: CurrentUser):
    """Get the current user."""
    return UserResponse(user=UserInfo(**auth.to_user_info()))
