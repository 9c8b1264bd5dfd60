"""
API Models for the Search Service

Pydantic response models for the search, admin and health endpoints. Search
requests and results reuse the search-layer models directly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class OperationResult(BaseModel):
    """
    Standardized maintenance operation result.
    Used by the admin index endpoints.
    """
    status: Literal["ok", "failed"]
    count: Optional[int] = Field(default=None, ge=0)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")


class PopularSearchItem(BaseModel):
    query: str
    search_count: int = Field(..., ge=0)
    last_searched_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IndexHealthResponse(BaseModel):
    healthy: bool
    primary_healthy: bool
    is_rebuilding: bool
    last_sync_time: datetime
    queue_size: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    primary_healthy: bool = False
