"""
Search Data Models

Query input, result output and statistics contracts shared by both search
engines, the index manager and the HTTP layer, plus the in-memory
`IndexOperation` unit of work.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..db.models import SearchIndex, to_naive_utc, utcnow


# ---------------------------------------------------------------------
# Query Input
# ---------------------------------------------------------------------

class SortBy(str, Enum):
    RELEVANCE = "relevance"
    DATE = "date"
    TITLE = "title"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SearchCriteria(BaseModel):
    """
    Search request.

    An empty `query` matches every active document that passes the other
    filters.
    """
    query: str = ""
    content_type: Optional[str] = Field(
        default=None,
        description="Restrict results to one entity type, e.g. 'Post'.",
    )
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    sort_by: SortBy = SortBy.RELEVANCE
    sort_direction: SortDirection = SortDirection.DESC
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
    enable_highlight: bool = False

    model_config = ConfigDict(extra="forbid")

    @field_validator("start_date", "end_date")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Index timestamps are stored as naive UTC.
        return to_naive_utc(value)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def terms(self) -> List[str]:
        return self.query.split() if self.query else []


# ---------------------------------------------------------------------
# Result Output
# ---------------------------------------------------------------------

class SearchResultItem(BaseModel):
    entity_id: uuid.UUID
    entity_type: str
    title: Optional[str] = None
    summary: Optional[str] = None
    score: float = Field(default=0.0, ge=0.0)
    matched_fields: List[str] = Field(default_factory=list)
    highlights: Optional[Dict[str, List[str]]] = None
    created_at: Optional[datetime] = None
    extra_data: Dict[str, Any] = Field(default_factory=dict)


class SearchResult(BaseModel):
    items: List[SearchResultItem] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)
    execution_time: int = Field(default=0, ge=0, description="Milliseconds.")

    @classmethod
    def empty(cls, execution_time: int = 0) -> "SearchResult":
        return cls(items=[], total_count=0, execution_time=execution_time)


class IndexStats(BaseModel):
    document_count: int = 0
    size_in_bytes: int = 0
    shard_count: int = 0
    replica_count: int = 0
    health_status: str = "unknown"
    last_updated_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------
# Queued Index Operations
# ---------------------------------------------------------------------

class IndexOperationType(str, Enum):
    INDEX = "index"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class IndexOperation:
    """A queued unit of index maintenance. Lives in memory only."""
    type: IndexOperationType
    entity_type: str
    entity_id: uuid.UUID
    search_index: Optional[SearchIndex] = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create_index(cls, search_index: SearchIndex) -> "IndexOperation":
        return cls(
            type=IndexOperationType.INDEX,
            entity_type=search_index.entity_type,
            entity_id=search_index.entity_id,
            search_index=search_index,
        )

    @classmethod
    def update_index(cls, search_index: SearchIndex) -> "IndexOperation":
        return cls(
            type=IndexOperationType.UPDATE,
            entity_type=search_index.entity_type,
            entity_id=search_index.entity_id,
            search_index=search_index,
        )

    @classmethod
    def delete_index(cls, entity_type: str, entity_id: uuid.UUID) -> "IndexOperation":
        return cls(
            type=IndexOperationType.DELETE,
            entity_type=entity_type,
            entity_id=entity_id,
        )
