from fastapi import HTTPException, Request, status

from ..search.manager import SearchIndexManager


def get_search_manager(request: Request) -> SearchIndexManager:
    manager = getattr(request.app.state, "search_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Search service is not initialized",
        )
    return manager
