from fastapi import APIRouter, Request

from .models import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    manager = getattr(request.app.state, "search_manager", None)
    return HealthResponse(primary_healthy=bool(manager and manager.primary_healthy))
