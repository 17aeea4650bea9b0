"""Sync routes: incremental sync and full-tree upload/download."""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, status

from taakl.types import ValidationError

from ..auth import CurrentUser
from ..database import Database, get_sync_engine
from ..logging_config import get_logger, log_sync_operation
from ..models import FullSyncDownloadResponse, FullSyncUploadResponse, SyncRequest, SyncResponse
from ..rate_limit import api_rate_limit, limiter

logger = get_logger("taakl.sync")
router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("", response_model=SyncResponse)
@limiter.limit(api_rate_limit)
async def sync(
    request: Request,
    auth: CurrentUser,
    db: Database,
    sync_request: SyncRequest | None = None,
):
    """
    Incremental sync.

    Applies the client's mutations in order (last write wins, rejected
    mutations count as conflicts), then returns every server-side change
    newer than ``lastSyncTime``. Without ``lastSyncTime`` everything is
    returned.
    """
    sync_request = sync_request or SyncRequest()
    changes = sync_request.changes or []
    logger.info(f"SYNC | {auth.username} | {len(changes)} changes since={sync_request.lastSyncTime}")

    engine = get_sync_engine(db, auth)
    result = engine.process_incremental_sync(changes, sync_request.lastSyncTime)

    stats = result.stats
    log_sync_operation(auth.username, "incremental", stats.processed, stats.accepted, stats.returned)
    return SyncResponse(**result.to_wire())


def _unwrap_snapshot(payload: Any) -> Any:
    """Accept both {"ttData": {...}} and a bare snapshot."""
    if isinstance(payload, dict) and payload.get("ttData") is not None:
        return payload["ttData"]
    return payload


@router.post("/full", response_model=FullSyncUploadResponse)
@limiter.limit(api_rate_limit)
async def upload_full(
    request: Request,
    auth: CurrentUser,
    db: Database,
    payload: Any = Body(default=None),
):
    """
    Full sync upload.

    Upserts the complete client tree, legacy (clients) and/or generalized
    (nodes) shape. Entities missing from the upload are left untouched.
    """
    snapshot = _unwrap_snapshot(payload)
    if not snapshot:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid data format - empty data",
        )
    if not isinstance(snapshot, dict) or not (snapshot.get("clients") or snapshot.get("nodes")):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid data format - missing clients or nodes",
        )

    engine = get_sync_engine(db, auth)
    try:
        stats = engine.import_full_data(snapshot)
    except ValidationError as e:
        log_sync_operation(auth.username, "full_upload", 0, 0, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid data format - {e}")

    total = sum(stats.values())
    log_sync_operation(auth.username, "full_upload", total, total)
    return FullSyncUploadResponse(message="Data imported successfully", stats=stats)


@router.get("/full", response_model=FullSyncDownloadResponse)
@limiter.limit(api_rate_limit)
async def download_full(request: Request, auth: CurrentUser, db: Database):
    """Full sync download: the complete live tree, root order and settings."""
    engine = get_sync_engine(db, auth)
    snapshot = engine.get_full_data()
    logger.info(
        f"SYNC | {auth.username} | full_download | clients={len(snapshot['clients'])} "
        f"nodes={len(snapshot['nodes'])}"
    )
    return FullSyncDownloadResponse(ttData=snapshot)
