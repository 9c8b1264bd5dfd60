"""
Database Search Engine

Relational-store fallback for the search cluster. Matching is done with
case-insensitive LIKE predicates (or a PostgreSQL full-text predicate when
enabled); relevance, summaries and highlights are computed in-process.

This engine is always available as long as the database is, which is why
the index manager writes to it unconditionally.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import uuid
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import Select, and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..db.models import Post, PopularSearch, SearchIndex, utcnow
from .engine import SearchEngine
from .models import (
    IndexStats,
    SearchCriteria,
    SearchResult,
    SearchResultItem,
    SortBy,
    SortDirection,
)
from .text import (
    calculate_relevance_score,
    generate_highlights,
    generate_summary,
    get_matched_fields,
)

logger = logging.getLogger(__name__)

LIKE_ESCAPE = "\\"
_TSQUERY_UNSAFE = re.compile(r"[^\w]+", re.UNICODE)


def _escape_like(term: str) -> str:
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def _contains(column, term: str):
    return column.ilike(f"%{_escape_like(term)}%", escape=LIKE_ESCAPE)


class DatabaseSearchEngine(SearchEngine):
    """
    Search engine backed by the `search_index` table.

    Each operation opens its own session from `session_factory`, so the
    engine is safe to call from concurrent tasks.
    """

    name = "database"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        batch_size: Optional[int] = None,
        rebuild_batch_size: Optional[int] = None,
        language: Optional[str] = None,
        fulltext_enabled: Optional[bool] = None,
    ) -> None:
        self._session_factory = session_factory
        self._batch_size = batch_size or settings.db_bulk_batch_size
        self._rebuild_batch_size = rebuild_batch_size or settings.rebuild_batch_size
        self._language = language or settings.search_default_language
        self._fulltext_enabled = (
            settings.db_fulltext_enabled if fulltext_enabled is None else fulltext_enabled
        )

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    async def search(self, criteria: SearchCriteria) -> SearchResult:
        started = time.perf_counter()
        try:
            async with self._session_factory() as session:
                stmt = self._build_query(criteria, self._dialect_name(session))

                total_count = await session.scalar(
                    select(func.count()).select_from(stmt.subquery())
                )

                page = await session.execute(
                    self._apply_sorting(stmt, criteria)
                    .offset(criteria.skip)
                    .limit(criteria.page_size)
                )
                documents = page.scalars().all()

            result = SearchResult(
                items=self._to_result_items(documents, criteria),
                total_count=total_count or 0,
                execution_time=int((time.perf_counter() - started) * 1000),
            )

            logger.info(
                "Database search completed: query=%r results=%d time=%dms",
                criteria.query, result.total_count, result.execution_time,
            )
            return result

        except Exception:
            logger.exception("Error occurred during database search: %r", criteria.query)
            return SearchResult.empty()

    async def get_suggestions(self, prefix: str, size: int = 5) -> List[str]:
        """
        Popular queries containing `prefix` (most searched first), topped up
        with matching active titles. Case-insensitively de-duplicated.
        """
        if not prefix or not prefix.strip() or size <= 0:
            return []

        normalized = prefix.strip().lower()
        try:
            async with self._session_factory() as session:
                popular = await session.execute(
                    select(PopularSearch.query)
                    .where(_contains(PopularSearch.normalized_query, normalized))
                    .order_by(PopularSearch.search_count.desc())
                    .limit(size)
                )
                suggestions: List[str] = list(popular.scalars().all())

                if len(suggestions) < size:
                    titles = await session.execute(
                        select(SearchIndex.title)
                        .where(
                            SearchIndex.is_active.is_(True),
                            SearchIndex.title.is_not(None),
                            _contains(SearchIndex.title, normalized),
                        )
                        .distinct()
                        .limit(size)
                    )
                    seen = {s.lower() for s in suggestions}
                    for title in titles.scalars().all():
                        if title and title.lower() not in seen:
                            suggestions.append(title)
                            seen.add(title.lower())

            return suggestions[:size]

        except Exception:
            logger.exception("Error getting search suggestions from database for %r", prefix)
            return []

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_document(self, document: SearchIndex) -> bool:
        try:
            async with self._session_factory() as session:
                await self._write_batch(session, [document])

            logger.debug(
                "Document indexed in database: %s:%s",
                document.entity_type, document.entity_id,
            )
            return True
        except Exception:
            logger.exception(
                "Error indexing document in database: %s:%s",
                document.entity_type, document.entity_id,
            )
            return False

    async def bulk_index(self, documents: Iterable[SearchIndex]) -> int:
        """
        Upsert documents in batches of `batch_size`, one commit per batch.

        Returns the number of documents in committed batches; a failing batch
        stops the run and is not counted.
        """
        docs = list(documents)
        if not docs:
            return 0

        success_count = 0
        try:
            async with self._session_factory() as session:
                for start in range(0, len(docs), self._batch_size):
                    batch = docs[start:start + self._batch_size]
                    await self._write_batch(session, batch)
                    success_count += len(batch)

            logger.info("Bulk index completed in database: %d documents", success_count)
        except Exception:
            logger.exception(
                "Error during bulk index operation in database (%d/%d written)",
                success_count, len(docs),
            )
        return success_count

    async def delete_document(self, entity_type: str, entity_id: uuid.UUID) -> bool:
        """
        Delete by natural key. A missing document is logged as a warning and
        still reported as success.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(SearchIndex).where(
                        SearchIndex.entity_type == entity_type,
                        SearchIndex.entity_id == entity_id,
                    )
                )
                existing = result.scalar_one_or_none()

                if existing is None:
                    logger.warning(
                        "Document not found for deletion in database: %s:%s",
                        entity_type, entity_id,
                    )
                    return True

                await session.delete(existing)
                await session.commit()

            logger.debug("Document deleted from database: %s:%s", entity_type, entity_id)
            return True
        except Exception:
            logger.exception(
                "Error deleting document from database: %s:%s", entity_type, entity_id
            )
            return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def is_healthy(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(select(SearchIndex.id).limit(1))
            return True
        except Exception:
            logger.exception("Database health check failed")
            return False

    async def rebuild_index(self, cancel_event: Optional[asyncio.Event] = None) -> bool:
        """
        Delete every index row, then re-create rows for all published,
        non-deleted posts in batches of `rebuild_batch_size`.

        `cancel_event` is checked between batches; a cancelled rebuild leaves
        a partial index and returns False.
        """
        try:
            logger.info("Starting database index rebuild")
            total = 0

            async with self._session_factory() as session:
                await session.execute(delete(SearchIndex))
                await session.commit()

                offset = 0
                while True:
                    if cancel_event is not None and cancel_event.is_set():
                        logger.info("Database index rebuild cancelled after %d documents", total)
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

                    session.add_all(SearchIndex.from_post(p, self._language) for p in posts)
                    await session.commit()

                    total += len(posts)
                    offset += self._rebuild_batch_size

            logger.info("Database index rebuild completed successfully: %d documents", total)
            return True

        except Exception:
            logger.exception("Error during database index rebuild")
            return False

    async def get_index_stats(self) -> IndexStats:
        try:
            async with self._session_factory() as session:
                total = await session.scalar(select(func.count()).select_from(SearchIndex))
                active = await session.scalar(
                    select(func.count()).select_from(SearchIndex).where(SearchIndex.is_active.is_(True))
                )
                last_updated = await session.scalar(select(func.max(SearchIndex.last_updated_at)))

            return IndexStats(
                document_count=total or 0,
                size_in_bytes=0,
                shard_count=1,
                replica_count=0,
                health_status="green" if active else "yellow",
                last_updated_at=last_updated or utcnow(),
            )
        except Exception:
            logger.exception("Error getting database index statistics")
            return IndexStats(health_status="red")

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _dialect_name(session: AsyncSession) -> str:
        return session.get_bind().dialect.name

    async def _write_batch(self, session: AsyncSession, batch: Sequence[SearchIndex]) -> None:
        """Upsert one batch by natural key and commit it."""
        keys = {(d.entity_type, d.entity_id) for d in batch}
        result = await session.execute(
            select(SearchIndex).where(
                or_(*(
                    and_(SearchIndex.entity_type == t, SearchIndex.entity_id == i)
                    for t, i in keys
                ))
            )
        )
        existing = {(r.entity_type, r.entity_id): r for r in result.scalars().all()}

        for document in batch:
            key = (document.entity_type, document.entity_id)
            current = existing.get(key)
            if current is not None:
                current.apply(document)
            else:
                record = document.clone()
                session.add(record)
                existing[key] = record

        await session.commit()

    def _build_query(self, criteria: SearchCriteria, dialect_name: str) -> Select:
        stmt = select(SearchIndex).where(SearchIndex.is_active.is_(True))

        terms = criteria.terms
        if terms:
            fulltext = None
            if self._fulltext_enabled and dialect_name == "postgresql":
                fulltext = self._fulltext_predicate(terms)

            if fulltext is not None:
                stmt = stmt.where(fulltext)
            else:
                # AND across terms, OR across fields
                for term in terms:
                    stmt = stmt.where(
                        or_(
                            _contains(SearchIndex.title, term),
                            _contains(SearchIndex.content, term),
                            _contains(SearchIndex.keywords, term),
                        )
                    )

        if criteria.content_type:
            stmt = stmt.where(SearchIndex.entity_type == criteria.content_type)

        if criteria.start_date is not None:
            stmt = stmt.where(SearchIndex.indexed_at >= criteria.start_date)

        if criteria.end_date is not None:
            stmt = stmt.where(SearchIndex.indexed_at <= criteria.end_date)

        return stmt

    @staticmethod
    def _fulltext_predicate(terms: Sequence[str]):
        tokens = [_TSQUERY_UNSAFE.sub("", t) for t in terms]
        tokens = [t for t in tokens if t]
        if not tokens:
            return None

        document = func.to_tsvector(
            "simple",
            func.concat_ws(" ", SearchIndex.title, SearchIndex.content, SearchIndex.keywords),
        )
        query = func.to_tsquery("simple", " & ".join(f"{t}:*" for t in tokens))
        return document.op("@@")(query)

    @staticmethod
    def _apply_sorting(stmt: Select, criteria: SearchCriteria) -> Select:
        ascending = criteria.sort_direction == SortDirection.ASC

        if criteria.sort_by == SortBy.DATE:
            column = SearchIndex.indexed_at
            return stmt.order_by(column.asc() if ascending else column.desc(), SearchIndex.id)

        if criteria.sort_by == SortBy.TITLE:
            column = SearchIndex.title
            return stmt.order_by(column.asc() if ascending else column.desc(), SearchIndex.id)

        return stmt.order_by(
            func.coalesce(SearchIndex.last_updated_at, SearchIndex.indexed_at).desc(),
            (SearchIndex.title_weight + SearchIndex.content_weight + SearchIndex.keyword_weight).desc(),
            SearchIndex.id,
        )

    @staticmethod
    def _to_result_items(
        documents: Sequence[SearchIndex],
        criteria: SearchCriteria,
    ) -> List[SearchResultItem]:
        terms = criteria.terms
        items: List[SearchResultItem] = []

        for document in documents:
            item = SearchResultItem(
                entity_id=document.entity_id,
                entity_type=document.entity_type,
                title=document.title,
                summary=generate_summary(document.content),
                score=calculate_relevance_score(document, terms),
                matched_fields=get_matched_fields(document, terms),
                created_at=document.indexed_at,
                extra_data={
                    "language": document.language,
                    "keywords": document.keywords or "",
                },
            )
            if criteria.enable_highlight and terms:
                item.highlights = generate_highlights(document, terms)

            items.append(item)

        return items
