"""
Search Routes

Public search endpoints. Queries are served by the search index manager,
which picks the cluster or the database engine depending on cluster health.
"""

from typing import Annotated, List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_async_session, get_popular_searches, record_search_query
from ..search.manager import SearchIndexManager
from ..search.models import SearchCriteria, SearchResult
from .dependencies import get_search_manager
from .models import PopularSearchItem

router = APIRouter(prefix="/search", tags=["search"])


@router.post(
    "",
    response_model=SearchResult,
    summary="Full-text search over indexed content",
    status_code=status.HTTP_200_OK,
)
async def search(
    criteria: SearchCriteria,
    manager: Annotated[SearchIndexManager, Depends(get_search_manager)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
) -> SearchResult:
    """
    Run a search and record the query for popularity tracking.

    Parameters
    ----------
    criteria : SearchCriteria
        Query text, filters, sorting, paging and highlight switch.

    Returns
    -------
    SearchResult
        One page of ranked results plus the total match count.
    """
    result = await manager.search(criteria)

    if criteria.query.strip():
        await record_search_query(session, criteria.query)

    return result


@router.get(
    "/suggestions",
    response_model=List[str],
    summary="Query completions for a prefix",
)
async def suggestions(
    manager: Annotated[SearchIndexManager, Depends(get_search_manager)],
    q: str = Query(..., min_length=1, max_length=100),
    size: int = Query(5, ge=1, le=20),
) -> List[str]:
    return await manager.get_suggestions(q, size)


@router.get(
    "/popular",
    response_model=List[PopularSearchItem],
    summary="Most frequently searched queries",
)
async def popular(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    limit: int = Query(10, ge=1, le=100),
) -> List[PopularSearchItem]:
    rows = await get_popular_searches(session, limit)
    return [PopularSearchItem.model_validate(row) for row in rows]
