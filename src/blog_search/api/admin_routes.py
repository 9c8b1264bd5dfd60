"""
Index Administration Routes

Maintenance endpoints for the search index: full rebuild, incremental sync,
queue processing, cleanup of stale entries, statistics and health.
"""

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..search.manager import SearchIndexManager
from ..search.models import IndexStats
from .dependencies import get_search_manager
from .models import IndexHealthResponse, OperationResult

router = APIRouter(prefix="/admin/index", tags=["admin"])

Manager = Annotated[SearchIndexManager, Depends(get_search_manager)]


def _result(success: bool, count: Optional[int] = None) -> OperationResult:
    return OperationResult(status="ok" if success else "failed", count=count)


@router.post("/rebuild", response_model=OperationResult)
async def rebuild(manager: Manager) -> OperationResult:
    """
    Rebuild every engine from published posts.

    Returns 409 when another rebuild is already running.
    """
    if manager.is_rebuilding:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Index rebuild already in progress",
        )
    return _result(await manager.rebuild_index())


@router.post("/sync", response_model=OperationResult)
async def sync(
    manager: Manager,
    since: Optional[datetime] = Query(None, description="Defaults to the last sync time."),
) -> OperationResult:
    return _result(await manager.incremental_sync(since))


@router.post("/queue/process", response_model=OperationResult)
async def process_queue(manager: Manager) -> OperationResult:
    return _result(True, await manager.process_index_queue())


@router.post("/cleanup", response_model=OperationResult)
async def cleanup(manager: Manager) -> OperationResult:
    return _result(True, await manager.cleanup_invalid_indexes())


@router.get("/stats", response_model=IndexStats)
async def stats(manager: Manager) -> IndexStats:
    return await manager.get_index_stats()


@router.get("/health", response_model=IndexHealthResponse)
async def index_health(manager: Manager) -> IndexHealthResponse:
    healthy = await manager.health_check()
    return IndexHealthResponse(
        healthy=healthy,
        primary_healthy=manager.primary_healthy,
        is_rebuilding=manager.is_rebuilding,
        last_sync_time=manager.last_sync_time,
        queue_size=manager.queue_size,
    )
