"""REST API endpoints for triggering and inspecting synchronization.

Sweeps run inline and return their report. A sweep already running for the
same entity type yields 409; missing board configuration yields 503.
All trigger endpoints require X-API-Key when ADMIN_API_KEY is set.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.gymsync.api.deps import get_sync_registry, require_admin_key
from src.gymsync.boards.client import BoardClient
from src.gymsync.boards.errors import BoardAPIError
from src.gymsync.config import ConfigurationError
from src.gymsync.sync.guard import SyncInProgressError
from src.gymsync.sync.manager import SyncManager
from src.gymsync.sync.registry import SyncRegistry
from src.gymsync.sync.schemas import EntitySyncStats, FullSyncReport, SyncItemResult, SyncReport

router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[Depends(require_admin_key)])


# ── Response Schemas ─────────────────────────────────────────────────────────


class BidirectionalSyncResponse(BaseModel):
    outbound: SyncReport
    inbound: SyncReport


class SyncStatusResponse(BaseModel):
    in_progress: bool
    current_entity: str | None = None
    entities: list[EntitySyncStats] = Field(default_factory=list)


class ConnectionResponse(BaseModel):
    connected: bool
    account: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_manager(entity_type: str, registry: SyncRegistry) -> SyncManager:
    """Resolve a manager by entity type name, 404 if unknown."""
    try:
        return registry.get(entity_type)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown entity type: {entity_type}",
        )


def _get_board_client(request: Request) -> BoardClient:
    """Retrieve BoardClient from app.state, 503 if not available."""
    client = getattr(request.app.state, "board_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Board client not initialized (BOARD_API_TOKEN may not be configured)",
        )
    return client


def _sync_error(exc: Exception) -> HTTPException:
    if isinstance(exc, SyncInProgressError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/all", response_model=FullSyncReport)
async def sync_all(registry: SyncRegistry = Depends(get_sync_registry)) -> FullSyncReport:
    """Bidirectional sync for every configured entity type."""
    try:
        return await registry.sync_all()
    except ConfigurationError as exc:
        raise _sync_error(exc)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(registry: SyncRegistry = Depends(get_sync_registry)) -> SyncStatusResponse:
    in_progress, current = await registry.is_sync_in_progress()
    return SyncStatusResponse(
        in_progress=in_progress,
        current_entity=current,
        entities=await registry.stats(),
    )


@router.get("/connection", response_model=ConnectionResponse)
async def check_connection(client: BoardClient = Depends(_get_board_client)) -> ConnectionResponse:
    """Verify the API token against the board platform."""
    try:
        account = await client.test_connection()
    except BoardAPIError as exc:
        return ConnectionResponse(connected=False, error=str(exc))
    return ConnectionResponse(connected=True, account=account)


@router.get("/{entity_type}/columns")
async def board_columns(
    entity_type: str,
    registry: SyncRegistry = Depends(get_sync_registry),
    client: BoardClient = Depends(_get_board_client),
) -> dict[str, Any]:
    """Column definitions of the entity's board."""
    manager = _get_manager(entity_type, registry)
    if not manager.board_id:
        raise _sync_error(ConfigurationError(f"{entity_type.upper()}_BOARD_ID is not configured"))
    try:
        columns = await client.get_board_columns(manager.board_id)
    except BoardAPIError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return {"board_id": manager.board_id, "columns": columns}


@router.post("/{entity_type}/push", response_model=SyncReport)
async def push_pending(
    entity_type: str,
    registry: SyncRegistry = Depends(get_sync_registry),
) -> SyncReport:
    """Push every pending or errored record of one entity type."""
    manager = _get_manager(entity_type, registry)
    try:
        return await manager.sync_all_pending()
    except (SyncInProgressError, ConfigurationError) as exc:
        raise _sync_error(exc)


@router.post("/{entity_type}/pull", response_model=SyncReport)
async def pull_all(
    entity_type: str,
    registry: SyncRegistry = Depends(get_sync_registry),
) -> SyncReport:
    """Apply every item on the entity's board locally."""
    manager = _get_manager(entity_type, registry)
    try:
        return await manager.full_sync_from_remote()
    except (SyncInProgressError, ConfigurationError) as exc:
        raise _sync_error(exc)


@router.post("/{entity_type}/bidirectional", response_model=BidirectionalSyncResponse)
async def bidirectional(
    entity_type: str,
    registry: SyncRegistry = Depends(get_sync_registry),
) -> BidirectionalSyncResponse:
    manager = _get_manager(entity_type, registry)
    try:
        outbound, inbound = await manager.perform_bidirectional_sync()
    except (SyncInProgressError, ConfigurationError) as exc:
        raise _sync_error(exc)
    return BidirectionalSyncResponse(outbound=outbound, inbound=inbound)


@router.post("/{entity_type}/records/{local_id}", response_model=SyncItemResult)
async def push_record(
    entity_type: str,
    local_id: str,
    force: bool = Query(default=False),
    registry: SyncRegistry = Depends(get_sync_registry),
) -> SyncItemResult:
    """Push one record now; force re-sends an already synced record."""
    manager = _get_manager(entity_type, registry)
    try:
        result = await manager.sync_one(local_id, force=force)
    except ConfigurationError as exc:
        raise _sync_error(exc)
    if result.error == "not found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Record {local_id} not found")
    return result


@router.post("/{entity_type}/items/{item_id}", response_model=SyncItemResult)
async def pull_item(
    entity_type: str,
    item_id: str,
    registry: SyncRegistry = Depends(get_sync_registry),
) -> SyncItemResult:
    """Fetch one board item and apply it locally."""
    manager = _get_manager(entity_type, registry)
    try:
        return await manager.sync_one_from_remote(item_id)
    except ConfigurationError as exc:
        raise _sync_error(exc)
    except BoardAPIError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
