"""
Search Engine Contract

Every backend implements the same coroutine API. Implementations never
raise for operational failures: they log and return a negative result
(False, 0, an empty list or an empty SearchResult).
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from ..db.models import SearchIndex
from .models import IndexStats, SearchCriteria, SearchResult


class SearchEngine(ABC):
    #: Short backend label used in log lines.
    name: str = "engine"

    # Querying
    @abstractmethod
    async def search(self, criteria: SearchCriteria) -> SearchResult:
        """Run a query; an empty result on failure."""

    @abstractmethod
    async def get_suggestions(self, prefix: str, size: int = 5) -> List[str]:
        """Up to `size` distinct completions for `prefix`."""

    # Indexing
    @abstractmethod
    async def index_document(self, document: SearchIndex) -> bool:
        """Upsert one document by `(entity_type, entity_id)`."""

    @abstractmethod
    async def bulk_index(self, documents: Iterable[SearchIndex]) -> int:
        """Upsert many documents; returns the number written."""

    @abstractmethod
    async def delete_document(self, entity_type: str, entity_id: uuid.UUID) -> bool:
        """Remove one document by its natural key."""

    async def update_document(self, document: SearchIndex) -> bool:
        return await self.index_document(document)

    # Lifecycle
    @abstractmethod
    async def is_healthy(self) -> bool:
        """Lightweight liveness check."""

    @abstractmethod
    async def rebuild_index(self, cancel_event: Optional[asyncio.Event] = None) -> bool:
        """Clear every document and re-derive from the authoritative store."""

    @abstractmethod
    async def get_index_stats(self) -> IndexStats:
        """Document count, size and coarse health."""
