"""
Search Index Manager

Coordinates the primary (cluster) and fallback (database) search engines:

- Dual-writes every index change, skipping the primary while it is degraded
- Routes reads to the primary when healthy, otherwise to the fallback
- Serializes full rebuilds behind a try-acquire lock
- Runs periodic health checks and incremental syncs as asyncio tasks
- Buffers index operations in an in-process queue

Skipped primary writes are not replayed individually; the next incremental
sync re-sends every record changed since the previous one.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings, settings as default_settings
from ..constants import POST_ENTITY_TYPE
from ..db.models import Post, SearchIndex, to_naive_utc, utcnow
from .engine import SearchEngine
from .models import (
    IndexOperation,
    IndexOperationType,
    IndexStats,
    SearchCriteria,
    SearchResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEGRADED_STATUS = "degraded"


class SearchIndexManager:
    """
    Facade over the primary and fallback engines.

    Parameters
    ----------
    primary : SearchEngine, optional
        Cluster engine. ``None`` runs the manager on the fallback alone.
    fallback : SearchEngine
        Always-available database engine; receives every write.
    session_factory : async_sessionmaker
        Source of sessions for index records and posts.
    conf : Settings, optional
        Batch sizes and timer intervals. Defaults to the global settings.
    """

    def __init__(
        self,
        primary: Optional[SearchEngine],
        fallback: SearchEngine,
        session_factory: async_sessionmaker[AsyncSession],
        conf: Optional[Settings] = None,
    ) -> None:
        conf = conf or default_settings

        self.primary = primary
        self.fallback = fallback
        self._session_factory = session_factory

        self._language = conf.search_default_language
        self._rebuild_batch_size = conf.rebuild_batch_size
        self._queue_batch_size = conf.queue_batch_size
        self._health_check_interval = conf.health_check_interval_seconds
        self._sync_interval = conf.sync_interval_seconds
        self._sync_initial_delay = conf.sync_initial_delay_seconds

        self._primary_healthy = primary is not None
        self._rebuild_lock = asyncio.Lock()
        self._last_sync_time: datetime = utcnow()
        self._queue: asyncio.Queue[IndexOperation] = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def primary_healthy(self) -> bool:
        return self._primary_healthy

    @property
    def is_rebuilding(self) -> bool:
        return self._rebuild_lock.locked()

    @property
    def last_sync_time(self) -> datetime:
        return self._last_sync_time

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def _use_primary(self) -> bool:
        return self.primary is not None and self._primary_healthy

    def _write_targets(self) -> List[SearchEngine]:
        engines = [self.fallback]
        if self._use_primary():
            engines.insert(0, self.primary)
        return engines

    async def _fan_out(
        self,
        operation: str,
        call: Callable[[SearchEngine], Awaitable[T]],
    ) -> List[Optional[T]]:
        """
        Run `call` against every write target concurrently. An engine that
        raises contributes ``None``.
        """
        engines = self._write_targets()
        results = await asyncio.gather(*(call(e) for e in engines), return_exceptions=True)

        outcomes: List[Optional[T]] = []
        for engine, result in zip(engines, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.error("%s failed on %s engine: %s", operation, engine.name, result)
                outcomes.append(None)
            else:
                outcomes.append(result)
        return outcomes

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def index_document(self, document: SearchIndex) -> bool:
        try:
            logger.debug("Indexing document %s:%s", document.entity_type, document.entity_id)

            results = await self._fan_out("index_document", lambda e: e.index_document(document))
            success = any(r is True for r in results)

            if success:
                await self._save_records([document])
            else:
                logger.warning(
                    "Failed to index document %s:%s in any engine",
                    document.entity_type, document.entity_id,
                )
            return success

        except Exception:
            logger.exception(
                "Error indexing document %s:%s", document.entity_type, document.entity_id
            )
            return False

    async def update_document(self, document: SearchIndex) -> bool:
        try:
            logger.debug("Updating document %s:%s", document.entity_type, document.entity_id)

            results = await self._fan_out("update_document", lambda e: e.update_document(document))
            success = any(r is True for r in results)

            if success:
                await self._save_records([document])
            else:
                logger.warning(
                    "Failed to update document %s:%s in any engine",
                    document.entity_type, document.entity_id,
                )
            return success

        except Exception:
            logger.exception(
                "Error updating document %s:%s", document.entity_type, document.entity_id
            )
            return False

    async def delete_document(self, entity_type: str, entity_id: uuid.UUID) -> bool:
        try:
            logger.debug("Deleting document %s:%s", entity_type, entity_id)

            results = await self._fan_out(
                "delete_document", lambda e: e.delete_document(entity_type, entity_id)
            )
            success = any(r is True for r in results)

            if success:
                await self._remove_record(entity_type, entity_id)
            else:
                logger.warning("Failed to delete document %s:%s from any engine", entity_type, entity_id)
            return success

        except Exception:
            logger.exception("Error deleting document %s:%s", entity_type, entity_id)
            return False

    async def bulk_index(self, documents: Iterable[SearchIndex]) -> int:
        """
        Index many documents in every write target.

        Returns the larger of the engines' success counts. The first `count`
        documents are then recorded in the relational store.
        """
        return await self._bulk_index(documents, touch=True)

    async def _bulk_index(self, documents: Iterable[SearchIndex], touch: bool) -> int:
        docs = list(documents)
        if not docs:
            return 0

        try:
            logger.info("Bulk indexing %d documents", len(docs))

            results = await self._fan_out("bulk_index", lambda e: e.bulk_index(docs))
            count = max((r or 0 for r in results), default=0)

            if count > 0:
                await self._save_records(docs[:count], touch=touch)

            logger.info("Bulk indexed %d/%d documents", count, len(docs))
            return count

        except Exception:
            logger.exception("Error during bulk indexing")
            return 0

    async def _save_records(self, documents: List[SearchIndex], touch: bool = True) -> None:
        """
        Upsert index records by natural key.

        With `touch`, each stored record is stamped with the current time so
        the next incremental sync re-sends it to an engine that missed it.
        Sync writes pass `touch=False` and keep the stored change time.
        """
        try:
            async with self._session_factory() as session:
                for document in documents:
                    result = await session.execute(
                        select(SearchIndex).where(
                            SearchIndex.entity_type == document.entity_type,
                            SearchIndex.entity_id == document.entity_id,
                        )
                    )
                    existing = result.scalar_one_or_none()
                    if existing is not None:
                        existing.apply(document)
                        if touch:
                            existing.touch()
                    else:
                        record = document.clone()
                        if touch:
                            record.touch()
                        session.add(record)
                        # Flush so a later duplicate key in this batch finds the row.
                        await session.flush()
                await session.commit()
        except Exception:
            logger.exception("Error saving %d index records", len(documents))

    async def _remove_record(self, entity_type: str, entity_id: uuid.UUID) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(SearchIndex).where(
                        SearchIndex.entity_type == entity_type,
                        SearchIndex.entity_id == entity_id,
                    )
                )
                await session.commit()
        except Exception:
            logger.exception("Error removing index record %s:%s", entity_type, entity_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(self, criteria: SearchCriteria) -> SearchResult:
        try:
            if self._use_primary():
                result = await self.primary.search(criteria)
                if result.items:
                    return result
                logger.debug("Primary engine returned no results for %r, using fallback", criteria.query)

            return await self.fallback.search(criteria)

        except Exception:
            logger.exception("Error searching for %r", criteria.query)
            return SearchResult.empty()

    async def get_suggestions(self, prefix: str, size: int = 5) -> List[str]:
        try:
            if self._use_primary():
                suggestions = await self.primary.get_suggestions(prefix, size)
                if suggestions:
                    return suggestions

            return await self.fallback.get_suggestions(prefix, size)

        except Exception:
            logger.exception("Error getting suggestions for %r", prefix)
            return []

    # ------------------------------------------------------------------
    # Rebuild & Sync
    # ------------------------------------------------------------------

    async def rebuild_index(self, cancel_event: Optional[asyncio.Event] = None) -> bool:
        """
        Clear and repopulate every engine from published, non-deleted posts.

        Only one rebuild runs at a time; a concurrent call returns False
        immediately instead of waiting. `cancel_event` stops the run between
        batches and makes it return False.
        """
        # locked() and the uncontended acquire below do not yield, so the
        # check-then-acquire is atomic on the event loop.
        if self._rebuild_lock.locked():
            logger.warning("Index rebuild is already in progress")
            return False

        async with self._rebuild_lock:
            try:
                logger.info("Starting full index rebuild")

                results = await self._fan_out(
                    "rebuild_index", lambda e: e.rebuild_index(cancel_event)
                )
                if not any(r is True for r in results):
                    logger.error("Index rebuild failed in every engine")
                    return False

                total = 0
                offset = 0
                async with self._session_factory() as session:
                    while True:
                        if cancel_event is not None and cancel_event.is_set():
                            logger.info("Index rebuild cancelled after %d documents", total)
                            return False

                        result = await session.execute(
                            select(Post)
                            .where(Post.is_published.is_(True), Post.is_deleted.is_(False))
                            .order_by(Post.id)
                            .offset(offset)
                            .limit(self._rebuild_batch_size)
                        )
                        posts = result.scalars().all()
                        if not posts:
                            break

                        total += await self.bulk_index(
                            SearchIndex.from_post(p, self._language) for p in posts
                        )
                        offset += self._rebuild_batch_size
                        logger.info("Rebuild progress: %d documents indexed", total)

                logger.info("Full index rebuild completed: %d documents", total)
                return True

            except Exception:
                logger.exception("Error during full index rebuild")
                return False

    async def incremental_sync(self, since: Optional[datetime] = None) -> bool:
        """
        Re-index every record created or updated after `since` (default: the
        previous sync). The watermark advances even if some writes fail.
        """
        watermark = to_naive_utc(since) or self._last_sync_time
        started = utcnow()

        try:
            logger.info("Starting incremental sync since %s", watermark.isoformat())

            async with self._session_factory() as session:
                result = await session.execute(
                    select(SearchIndex).where(
                        or_(
                            SearchIndex.last_updated_at > watermark,
                            SearchIndex.indexed_at > watermark,
                        )
                    )
                )
                documents = list(result.scalars().all())

            if documents:
                count = await self._bulk_index(documents, touch=False)
                logger.info("Incremental sync completed: %d/%d documents", count, len(documents))
            else:
                logger.debug("Incremental sync found no changed documents")
            return True

        except Exception:
            logger.exception("Error during incremental sync")
            return False
        finally:
            self._last_sync_time = started

    async def health_check(self) -> bool:
        """
        Check both engines concurrently and update the primary health flag.

        Returns True when at least one engine is healthy.
        """
        try:
            checks: List[Awaitable[bool]] = [self.fallback.is_healthy()]
            if self.primary is not None:
                checks.append(self.primary.is_healthy())

            results = await asyncio.gather(*checks, return_exceptions=True)
            fallback_ok = results[0] is True
            primary_ok = len(results) > 1 and results[1] is True

            if self.primary is not None and primary_ok != self._primary_healthy:
                if primary_ok:
                    logger.info("Primary search engine recovered")
                else:
                    logger.warning("Primary search engine is unhealthy, switching to fallback")
            self._primary_healthy = primary_ok

            if not fallback_ok:
                logger.warning("Fallback search engine is unhealthy")

            return primary_ok or fallback_ok

        except Exception:
            logger.exception("Error during search engine health check")
            return False

    # ------------------------------------------------------------------
    # Operation Queue
    # ------------------------------------------------------------------

    async def queue_index_operation(self, operation: IndexOperation) -> int:
        """Enqueue an operation. Returns the current queue size."""
        await self._queue.put(operation)
        qsize = self._queue.qsize()
        logger.debug(
            "Queued %s operation for %s:%s (queue size: %d)",
            operation.type.value, operation.entity_type, operation.entity_id, qsize,
        )
        return qsize

    async def process_index_queue(self) -> int:
        """
        Drain up to `queue_batch_size` operations.

        Index and update operations go out as one bulk write; deletes are
        applied one by one. Groups run in the order their first operation was
        queued, so an index and a delete for the same key may be reordered.

        Returns the number of operations taken off the queue.
        """
        operations: List[IndexOperation] = []
        while len(operations) < self._queue_batch_size:
            try:
                operations.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break

        if not operations:
            return 0

        groups: Dict[bool, List[IndexOperation]] = {}
        for op in operations:
            groups.setdefault(op.type == IndexOperationType.DELETE, []).append(op)

        try:
            for is_delete, group in groups.items():
                if is_delete:
                    for op in group:
                        await self.delete_document(op.entity_type, op.entity_id)
                else:
                    documents = [op.search_index for op in group if op.search_index is not None]
                    if documents:
                        await self.bulk_index(documents)

            logger.info("Processed %d queued index operations", len(operations))
            return len(operations)

        except Exception:
            logger.exception("Error processing index queue")
            return 0
        finally:
            for _ in operations:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def build_post_index(self, post: Post) -> SearchIndex:
        return SearchIndex.from_post(post, self._language)

    async def index_post(self, post: Post) -> bool:
        return await self.index_document(self.build_post_index(post))

    async def queue_post(self, post: Post) -> int:
        return await self.queue_index_operation(IndexOperation.create_index(self.build_post_index(post)))

    async def index_entity(self, entity_type: str, entity_id: uuid.UUID) -> bool:
        """Load an entity from the store and index it. Only posts are supported."""
        if entity_type.lower() != POST_ENTITY_TYPE.lower():
            logger.warning("Unsupported entity type for indexing: %s", entity_type)
            return False

        try:
            async with self._session_factory() as session:
                post = await session.get(Post, entity_id)
        except Exception:
            logger.exception("Error loading %s:%s for indexing", entity_type, entity_id)
            return False

        if post is None:
            logger.warning("Entity not found for indexing: %s:%s", entity_type, entity_id)
            return False

        return await self.index_post(post)

    async def cleanup_invalid_indexes(self) -> int:
        """
        Delete post entries whose post is gone, deleted or unpublished.
        Returns the number of entries removed.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SearchIndex.entity_type, SearchIndex.entity_id)
                    .outerjoin(Post, Post.id == SearchIndex.entity_id)
                    .where(
                        SearchIndex.entity_type == POST_ENTITY_TYPE,
                        or_(
                            Post.id.is_(None),
                            Post.is_deleted.is_(True),
                            Post.is_published.is_(False),
                        ),
                    )
                )
                stale = result.all()

            cleaned = 0
            for entity_type, entity_id in stale:
                if await self.delete_document(entity_type, entity_id):
                    cleaned += 1

            logger.info("Cleaned up %d invalid index entries", cleaned)
            return cleaned

        except Exception:
            logger.exception("Error during index cleanup")
            return 0

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_index_stats(self) -> IndexStats:
        """
        Merge engine statistics: the larger document count, the summed size,
        the primary's shard layout and the primary's health (``degraded``
        while the primary is down or disabled).
        """
        try:
            fallback_stats = await self.fallback.get_index_stats()
            primary_stats = await self.primary.get_index_stats() if self.primary is not None else None

            layout = primary_stats or fallback_stats
            return IndexStats(
                document_count=max(
                    fallback_stats.document_count,
                    primary_stats.document_count if primary_stats else 0,
                ),
                size_in_bytes=fallback_stats.size_in_bytes
                + (primary_stats.size_in_bytes if primary_stats else 0),
                shard_count=layout.shard_count,
                replica_count=layout.replica_count,
                health_status=(
                    primary_stats.health_status
                    if primary_stats is not None and self._primary_healthy
                    else DEGRADED_STATUS
                ),
                last_updated_at=utcnow(),
            )

        except Exception:
            logger.exception("Error getting index statistics")
            return IndexStats(health_status=DEGRADED_STATUS)

    # ------------------------------------------------------------------
    # Background Maintenance
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic health-check and incremental-sync loops."""
        if self._tasks:
            return

        self._tasks = [
            asyncio.create_task(
                self._run_periodic("health check", self.health_check, 0.0, self._health_check_interval)
            ),
            asyncio.create_task(
                self._run_periodic(
                    "incremental sync", self.incremental_sync,
                    self._sync_initial_delay, self._sync_interval,
                )
            ),
        ]
        logger.info("Search index maintenance started")

    async def stop(self) -> None:
        """Cancel the background loops and wait for them to exit."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Search index maintenance stopped")

    async def _run_periodic(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        initial_delay: float,
        interval: float,
    ) -> None:
        await asyncio.sleep(initial_delay)
        while True:
            await self._tick(name, job)
            await asyncio.sleep(interval)

    async def _tick(self, name: str, job: Callable[[], Awaitable[Any]]) -> None:
        """One timer iteration. Skipped during a rebuild; never raises."""
        if self.is_rebuilding:
            logger.debug("Skipping %s while the index is rebuilding", name)
            return
        try:
            await job()
        except Exception:
            logger.exception("Error during periodic %s", name)
