"""
Search Service Error Responses

Engines and the index manager turn backend failures into negative results
(empty result sets, False, 0), so exceptions only reach these handlers from
route code itself: the popular-query store behind `/search` and
`/search/popular`, or a bug in a route.

- `database_exception_handler` answers SQLAlchemy failures with 503 so
  clients can retry once the database is back.
- `unhandled_exception_handler` answers everything else with 500.

Neither response carries exception text.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger("blog_search.errors")


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    payload: Dict[str, Any] = {"error": error, "detail": detail}
    return JSONResponse(status_code=status_code, content=payload)


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def database_exception_handler(
    request: Request,
    exc: SQLAlchemyError,
) -> JSONResponse:
    """
    Map a database failure raised inside a search route to 503.

    Parameters
    ----------
    request : Request
        The search or admin request being served.

    exc : SQLAlchemyError
        The failure raised by the session or a query.

    Returns
    -------
    JSONResponse
        ``{"error": "database_unavailable", ...}`` with status 503.
    """
    logger.error(
        "Search database error during %s %s: %s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )
    return _error_response(503, "database_unavailable", "Search database unavailable")


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Log any other exception escaping a route and answer with 500.
    """
    logger.exception(
        "Unhandled error in search service during %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return _error_response(500, "internal_server_error", "Internal server error")
