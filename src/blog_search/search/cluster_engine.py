"""
Cluster Search Engine

Primary search engine backed by an OpenSearch / Elasticsearch cluster via
the async `opensearch-py` client. Relevance is the cluster's native score.

Documents are stored under the natural key ``"{entity_type}:{entity_id}"``
so re-indexing the same entity overwrites it instead of duplicating it.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from opensearchpy import AsyncOpenSearch
from opensearchpy.exceptions import NotFoundError, RequestError
from opensearchpy.helpers import async_bulk

from ..config import Settings, settings as default_settings
from ..constants import HIGHLIGHT_POST_TAG, HIGHLIGHT_PRE_TAG
from ..db.models import SearchIndex, utcnow
from .engine import SearchEngine
from .models import (
    IndexStats,
    SearchCriteria,
    SearchResult,
    SearchResultItem,
    SortBy,
    SortDirection,
)
from .text import generate_summary

logger = logging.getLogger(__name__)


INDEX_BODY: Dict[str, Any] = {
    "settings": {
        "number_of_shards": 1,
        "number_of_replicas": 0,
    },
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "entity_type": {"type": "keyword"},
            "entity_id": {"type": "keyword"},
            "title": {
                "type": "text",
                "fields": {"raw": {"type": "keyword", "ignore_above": 512}},
            },
            "content": {"type": "text"},
            "keywords": {"type": "text"},
            "language": {"type": "keyword"},
            "title_weight": {"type": "double"},
            "content_weight": {"type": "double"},
            "keyword_weight": {"type": "double"},
            "indexed_at": {"type": "date"},
            "last_updated_at": {"type": "date"},
            "is_active": {"type": "boolean"},
        }
    },
}

SEARCH_FIELDS = ["title", "content", "keywords"]
HEALTHY_STATUSES = ("green", "yellow")


def create_client(conf: Settings) -> AsyncOpenSearch:
    auth = None
    if conf.opensearch_username and conf.opensearch_password:
        auth = (conf.opensearch_username, conf.opensearch_password.get_secret_value())

    return AsyncOpenSearch(
        hosts=conf.opensearch_host_list,
        http_auth=auth,
        timeout=conf.opensearch_timeout,
        verify_certs=conf.opensearch_verify_certs,
        max_retries=2,
        retry_on_timeout=True,
    )


def document_id(entity_type: str, entity_id: uuid.UUID) -> str:
    return f"{entity_type}:{entity_id}"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _total_hits(response: Dict[str, Any]) -> int:
    total = response.get("hits", {}).get("total", 0)
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total or 0)


class ClusterSearchEngine(SearchEngine):
    """
    Search engine delegating to the cluster's query, index and bulk APIs.

    When constructed inside a running event loop (and `ensure_on_init` is
    set) the index is created in a background task; otherwise call
    `ensure_index()` before first use.
    """

    name = "cluster"

    def __init__(
        self,
        client: Optional[AsyncOpenSearch] = None,
        index_name: Optional[str] = None,
        conf: Optional[Settings] = None,
        ensure_on_init: bool = True,
    ) -> None:
        conf = conf or default_settings
        self._client = client if client is not None else create_client(conf)
        self._index_name = index_name or conf.opensearch_index_name
        self._ensure_task: Optional[asyncio.Task] = None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None and ensure_on_init:
            self._ensure_task = loop.create_task(self.ensure_index())

    @property
    def index_name(self) -> str:
        return self._index_name

    async def close(self) -> None:
        if self._ensure_task is not None and not self._ensure_task.done():
            self._ensure_task.cancel()
        await self._client.close()

    # ------------------------------------------------------------------
    # Index lifecycle
    # ------------------------------------------------------------------

    async def ensure_index(self) -> bool:
        """Create the index with its mapping unless it already exists."""
        try:
            if await self._client.indices.exists(index=self._index_name):
                return True

            await self._client.indices.create(index=self._index_name, body=INDEX_BODY)
            logger.info("Index %s created successfully", self._index_name)
            return True

        except RequestError as exc:
            if exc.error == "resource_already_exists_exception":
                return True
            logger.error("Failed to create index %s: %s", self._index_name, exc.error)
            return False
        except Exception:
            logger.exception("Error ensuring index %s exists", self._index_name)
            return False

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    async def search(self, criteria: SearchCriteria) -> SearchResult:
        started = time.perf_counter()
        try:
            body: Dict[str, Any] = {
                "query": self._build_query(criteria),
                "sort": self._build_sort(criteria),
                "from": criteria.skip,
                "size": criteria.page_size,
                "track_total_hits": True,
            }
            if criteria.enable_highlight:
                body["highlight"] = {
                    "pre_tags": [HIGHLIGHT_PRE_TAG],
                    "post_tags": [HIGHLIGHT_POST_TAG],
                    "fields": {
                        "title": {"number_of_fragments": 0},
                        "content": {"fragment_size": 100, "number_of_fragments": 3},
                        "keywords": {"number_of_fragments": 0},
                    },
                }

            response = await self._client.search(index=self._index_name, body=body)

            result = SearchResult(
                items=[self._to_result_item(hit) for hit in response["hits"]["hits"]],
                total_count=_total_hits(response),
                execution_time=int((time.perf_counter() - started) * 1000),
            )

            logger.debug(
                "Search completed in %dms with %d results",
                result.execution_time, len(result.items),
            )
            return result

        except Exception:
            logger.exception("Error during cluster search: %r", criteria.query)
            return SearchResult.empty()

    async def get_suggestions(self, prefix: str, size: int = 5) -> List[str]:
        if not prefix or not prefix.strip() or size <= 0:
            return []

        try:
            response = await self._client.search(
                index=self._index_name,
                body={
                    "query": {
                        "bool": {
                            "must": [{"prefix": {"title": {"value": prefix.strip().lower()}}}],
                            "filter": [{"term": {"is_active": True}}],
                        }
                    },
                    "size": size,
                    "_source": ["title"],
                },
            )

            suggestions: List[str] = []
            for hit in response["hits"]["hits"]:
                title = (hit.get("_source") or {}).get("title")
                if title and title not in suggestions:
                    suggestions.append(title)
            return suggestions[:size]

        except Exception:
            logger.exception("Error getting suggestions for query: %r", prefix)
            return []

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def index_document(self, document: SearchIndex) -> bool:
        doc_id = document_id(document.entity_type, document.entity_id)
        try:
            await self._client.index(
                index=self._index_name,
                id=doc_id,
                body=document.to_document(),
            )
            logger.debug("Document %s indexed successfully", doc_id)
            return True
        except Exception:
            logger.exception("Error indexing document %s", doc_id)
            return False

    async def bulk_index(self, documents: Iterable[SearchIndex]) -> int:
        actions = [
            {
                "_op_type": "index",
                "_index": self._index_name,
                "_id": document_id(d.entity_type, d.entity_id),
                "_source": d.to_document(),
            }
            for d in documents
        ]
        if not actions:
            return 0

        try:
            success_count, errors = await async_bulk(
                self._client,
                actions,
                raise_on_error=False,
                raise_on_exception=False,
            )
            if errors:
                logger.warning("Bulk indexing reported %d failed items", len(errors))

            logger.info("Bulk indexed %d/%d documents", success_count, len(actions))
            return success_count

        except Exception:
            logger.exception("Error during bulk indexing")
            return 0

    async def delete_document(self, entity_type: str, entity_id: uuid.UUID) -> bool:
        """
        Look up the stored document id by natural key, then delete it.
        A document that does not exist counts as deleted.
        """
        try:
            response = await self._client.search(
                index=self._index_name,
                body={
                    "query": {
                        "bool": {
                            "must": [
                                {"term": {"entity_type": entity_type}},
                                {"term": {"entity_id": str(entity_id)}},
                            ]
                        }
                    },
                    "size": 1,
                    "_source": False,
                },
            )
            hits = response["hits"]["hits"]
            if not hits:
                logger.warning(
                    "Document not found for deletion: entity_type=%s entity_id=%s",
                    entity_type, entity_id,
                )
                return True

            await self._client.delete(index=self._index_name, id=hits[0]["_id"])
            logger.debug("Document deleted: entity_type=%s entity_id=%s", entity_type, entity_id)
            return True

        except NotFoundError:
            logger.warning(
                "Document not found for deletion: entity_type=%s entity_id=%s",
                entity_type, entity_id,
            )
            return True
        except Exception:
            logger.exception(
                "Error deleting document: entity_type=%s entity_id=%s", entity_type, entity_id
            )
            return False

    async def update_document(self, document: SearchIndex) -> bool:
        doc_id = document_id(document.entity_type, document.entity_id)
        body = document.to_document()
        body["last_updated_at"] = utcnow().isoformat()
        try:
            await self._client.update(
                index=self._index_name,
                id=doc_id,
                body={"doc": body, "doc_as_upsert": True},
            )
            logger.debug("Document %s updated successfully", doc_id)
            return True
        except Exception:
            logger.exception("Error updating document %s", doc_id)
            return False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def is_healthy(self) -> bool:
        try:
            health = await self._client.cluster.health()
            return health.get("status") in HEALTHY_STATUSES
        except Exception:
            logger.exception("Error checking cluster health")
            return False

    async def rebuild_index(self, cancel_event: Optional[asyncio.Event] = None) -> bool:
        """Drop and recreate the index; repopulation is the caller's job."""
        try:
            try:
                await self._client.indices.delete(index=self._index_name)
            except NotFoundError:
                pass
            return await self.ensure_index()
        except Exception:
            logger.exception("Error rebuilding index %s", self._index_name)
            return False

    async def get_index_stats(self) -> IndexStats:
        try:
            stats = await self._client.indices.stats(index=self._index_name)
            index_settings = await self._client.indices.get_settings(index=self._index_name)

            total = stats.get("indices", {}).get(self._index_name, {}).get("total", {})
            settings_block = (
                index_settings.get(self._index_name, {}).get("settings", {}).get("index", {})
            )

            try:
                health = await self._client.cluster.health()
                health_status = health.get("status", "unknown")
            except Exception:
                health_status = "unknown"

            return IndexStats(
                document_count=total.get("docs", {}).get("count", 0),
                size_in_bytes=total.get("store", {}).get("size_in_bytes", 0),
                shard_count=int(settings_block.get("number_of_shards", 0)),
                replica_count=int(settings_block.get("number_of_replicas", 0)),
                health_status=health_status,
                last_updated_at=utcnow(),
            )
        except Exception:
            logger.exception("Error getting index stats for %s", self._index_name)
            return IndexStats()

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    @staticmethod
    def _build_query(criteria: SearchCriteria) -> Dict[str, Any]:
        clauses: List[Dict[str, Any]] = []

        if criteria.query and criteria.query.strip():
            clauses.append({
                "multi_match": {
                    "query": criteria.query,
                    "fields": SEARCH_FIELDS,
                    "type": "best_fields",
                }
            })

        if criteria.content_type:
            clauses.append({"term": {"entity_type": criteria.content_type}})

        if criteria.start_date is not None or criteria.end_date is not None:
            date_range: Dict[str, str] = {}
            if criteria.start_date is not None:
                date_range["gte"] = criteria.start_date.isoformat()
            if criteria.end_date is not None:
                date_range["lte"] = criteria.end_date.isoformat()
            clauses.append({"range": {"indexed_at": date_range}})

        clauses.append({"term": {"is_active": True}})

        if len(clauses) == 1:
            return clauses[0]
        return {"bool": {"must": clauses}}

    @staticmethod
    def _build_sort(criteria: SearchCriteria) -> List[Dict[str, Any]]:
        order = "asc" if criteria.sort_direction == SortDirection.ASC else "desc"

        if criteria.sort_by == SortBy.DATE:
            return [{"indexed_at": {"order": order}}]
        if criteria.sort_by == SortBy.TITLE:
            return [{"title.raw": {"order": order}}]
        return [{"_score": {"order": "desc"}}]

    @staticmethod
    def _to_result_item(hit: Dict[str, Any]) -> SearchResultItem:
        source = hit.get("_source") or {}
        highlights = hit.get("highlight")

        return SearchResultItem(
            entity_id=uuid.UUID(str(source["entity_id"])),
            entity_type=source.get("entity_type", ""),
            title=source.get("title"),
            summary=generate_summary(source.get("content")),
            score=float(hit.get("_score") or 0.0),
            matched_fields=list(highlights.keys()) if highlights else [],
            highlights=highlights,
            created_at=_parse_datetime(source.get("indexed_at")),
            extra_data={
                "language": source.get("language"),
                "keywords": source.get("keywords") or "",
            },
        )
