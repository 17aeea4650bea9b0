"""Settings routes."""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, status

from ..auth import CurrentUser
from ..database import Database, get_sync_engine
from ..logging_config import get_logger
from ..models import MessageResponse, SettingsResponse
from ..rate_limit import api_rate_limit, limiter

logger = get_logger("taakl.settings")
router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=SettingsResponse)
@limiter.limit(api_rate_limit)
async def read_settings(request: Request, auth: CurrentUser, db: Database):
    """Get the user's settings."""
    return SettingsResponse(settings=get_sync_engine(db, auth).get_settings())


@router.put("", response_model=MessageResponse)
@limiter.limit(api_rate_limit)
async def update_settings(
    request: Request,
    auth: CurrentUser,
    db: Database,
    payload: Any = Body(default=None),
):
    """Merge settings; accepts {"settings": {...}} or a bare mapping."""
    settings = payload
    if isinstance(payload, dict) and payload.get("settings") is not None:
        settings = payload["settings"]
    if not settings or not isinstance(settings, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid settings format")

    get_sync_engine(db, auth).save_settings(settings)
    logger.info(f"SETTINGS | {auth.username} | saved {len(settings)} keys")
    return MessageResponse(message="Settings updated successfully")
