"""
Popular Search Tracking

Maintains per-query popularity counters. These feed the suggestion ranking
of the database search engine.
"""

from __future__ import annotations

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import PopularSearch, utcnow

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 200


def normalize_query(query: str) -> str:
    return query.strip().lower()


async def record_search_query(session: AsyncSession, query: str) -> bool:
    """
    Increment the popularity counter for a query, inserting it on first use.

    Blank queries are ignored. Failures are logged and reported as False so
    analytics never break a search request.

    Parameters
    ----------
    session : AsyncSession
        Session used for the read-modify-write; committed here.
    query : str
        Raw query text as typed by the user.

    Returns
    -------
    bool
        True if the counter was updated.
    """
    normalized = normalize_query(query or "")[:MAX_QUERY_LENGTH]
    if not normalized:
        return False

    try:
        result = await session.execute(
            select(PopularSearch).where(PopularSearch.normalized_query == normalized)
        )
        popular = result.scalar_one_or_none()

        if popular is not None:
            popular.search_count += 1
            popular.last_searched_at = utcnow()
        else:
            session.add(
                PopularSearch(
                    query=query.strip()[:MAX_QUERY_LENGTH],
                    normalized_query=normalized,
                    search_count=1,
                    last_searched_at=utcnow(),
                )
            )

        await session.commit()
        return True
    except Exception:
        logger.exception("Error updating popular search statistics for %r", query)
        await session.rollback()
        return False


async def get_popular_searches(session: AsyncSession, limit: int = 10) -> List[PopularSearch]:
    """
    Return the most frequently searched queries, most popular first.
    """
    result = await session.execute(
        select(PopularSearch)
        .order_by(PopularSearch.search_count.desc(), PopularSearch.last_searched_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
