"""
Database Search Engine Tests

Runs the engine against a temporary SQLite database.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from blog_search.db.models import PopularSearch, SearchIndex, utcnow
from blog_search.search.database_engine import DatabaseSearchEngine
from blog_search.search.models import SearchCriteria, SortBy, SortDirection


@pytest.fixture
def engine(session_factory):
    return DatabaseSearchEngine(session_factory, batch_size=100, rebuild_batch_size=1000)


async def count_rows(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(SearchIndex))


class TestIndexing:

    @pytest.mark.asyncio
    async def test_reindex_same_key_updates_in_place(self, engine, session_factory, make_document):
        entity_id = uuid.uuid4()
        assert await engine.index_document(make_document(title="First", entity_id=entity_id))
        assert await engine.index_document(make_document(title="Second", entity_id=entity_id))

        assert await count_rows(session_factory) == 1
        async with session_factory() as session:
            stored = await session.scalar(select(SearchIndex))
        assert stored.title == "Second"
        assert stored.last_updated_at is not None

    @pytest.mark.asyncio
    async def test_bulk_index_uses_batches(self, engine, session_factory, make_document):
        documents = [make_document(title=f"Doc {i}") for i in range(150)]

        with patch.object(engine, "_write_batch", wraps=engine._write_batch) as spy:
            count = await engine.bulk_index(documents)

        assert count == 150
        assert spy.await_count == 2
        assert [len(call.args[1]) for call in spy.await_args_list] == [100, 50]
        assert await count_rows(session_factory) == 150

    @pytest.mark.asyncio
    async def test_bulk_index_counts_committed_batches_on_failure(self, engine, make_document):
        documents = [make_document(title=f"Doc {i}") for i in range(150)]

        with patch.object(
            engine, "_write_batch", AsyncMock(side_effect=[None, RuntimeError("boom")])
        ):
            count = await engine.bulk_index(documents)

        assert count == 100

    @pytest.mark.asyncio
    async def test_bulk_index_empty(self, engine):
        assert await engine.bulk_index([]) == 0

    @pytest.mark.asyncio
    async def test_bulk_index_duplicate_keys(self, engine, session_factory, make_document):
        entity_id = uuid.uuid4()
        documents = [
            make_document(title="One", entity_id=entity_id),
            make_document(title="Two", entity_id=entity_id),
        ]

        assert await engine.bulk_index(documents) == 2
        assert await count_rows(session_factory) == 1

    @pytest.mark.asyncio
    async def test_delete_existing(self, engine, session_factory, make_document):
        doc = make_document(title="Doomed")
        await engine.index_document(doc)

        assert await engine.delete_document("Post", doc.entity_id) is True
        assert await count_rows(session_factory) == 0

    @pytest.mark.asyncio
    async def test_delete_missing_returns_true_with_warning(self, engine, caplog):
        with caplog.at_level(logging.WARNING):
            assert await engine.delete_document("Post", uuid.uuid4()) is True

        assert "not found" in caplog.text


class TestSearch:

    @pytest.mark.asyncio
    async def test_empty_query_returns_all_active_paginated(self, engine, make_document):
        await engine.bulk_index([make_document(title=f"Doc {i}") for i in range(3)])

        first = await engine.search(SearchCriteria(page=1, page_size=2))
        second = await engine.search(SearchCriteria(page=2, page_size=2))

        assert first.total_count == 3
        assert len(first.items) == 2
        assert len(second.items) == 1
        assert all(item.score == 1.0 for item in first.items + second.items)
        seen = {item.entity_id for item in first.items + second.items}
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_inactive_documents_excluded(self, engine, make_document):
        active = make_document(title="Visible")
        hidden = make_document(title="Hidden")
        hidden.deactivate()
        await engine.bulk_index([active, hidden])

        result = await engine.search(SearchCriteria())

        assert [item.entity_id for item in result.items] == [active.entity_id]

    @pytest.mark.asyncio
    async def test_title_match_outscores_content_match(self, engine, make_document):
        titled = make_document(title="Getting Started with React", content="intro")
        content_only = make_document(title="Frontend", content="we use react daily")
        unrelated = make_document(title="Python", content="snakes")
        await engine.bulk_index([titled, content_only, unrelated])

        result = await engine.search(SearchCriteria(query="react"))

        scores = {item.entity_id: item.score for item in result.items}
        assert result.total_count == 2
        assert unrelated.entity_id not in scores
        assert scores[titled.entity_id] > scores[content_only.entity_id]
        assert min(scores.values()) >= 0.1

    @pytest.mark.asyncio
    async def test_all_terms_must_match(self, engine, make_document):
        both = make_document(title="React", content="with typescript")
        one = make_document(title="React", content="with javascript")
        await engine.bulk_index([both, one])

        result = await engine.search(SearchCriteria(query="react typescript"))

        assert [item.entity_id for item in result.items] == [both.entity_id]

    @pytest.mark.asyncio
    async def test_like_wildcards_are_literal(self, engine, make_document):
        await engine.bulk_index([
            make_document(title="100% coverage"),
            make_document(title="1000 words"),
        ])

        result = await engine.search(SearchCriteria(query="100%"))

        assert [item.title for item in result.items] == ["100% coverage"]

    @pytest.mark.asyncio
    async def test_content_type_filter(self, engine, make_document):
        post = make_document(title="Hello", entity_type="Post")
        page = make_document(title="Hello", entity_type="Page")
        await engine.bulk_index([post, page])

        result = await engine.search(SearchCriteria(query="hello", content_type="Page"))

        assert [item.entity_type for item in result.items] == ["Page"]

    @pytest.mark.asyncio
    async def test_date_filter(self, engine, make_document):
        old = make_document(title="Old")
        old.indexed_at = utcnow() - timedelta(days=30)
        recent = make_document(title="Recent")
        await engine.bulk_index([old, recent])

        result = await engine.search(SearchCriteria(start_date=utcnow() - timedelta(days=1)))

        assert [item.title for item in result.items] == ["Recent"]

    @pytest.mark.asyncio
    async def test_date_filter_with_utc_offset(self, engine, make_document):
        doc = make_document(title="Morning")
        doc.indexed_at = datetime(2024, 1, 1, 2, 0)
        await engine.bulk_index([doc])

        # 02:00 UTC is 10:00 at +08:00.
        after = await engine.search(SearchCriteria(start_date="2024-01-01T09:00:00+08:00"))
        before = await engine.search(SearchCriteria(end_date="2024-01-01T09:30:00+08:00"))

        assert [item.title for item in after.items] == ["Morning"]
        assert before.total_count == 0

    @pytest.mark.asyncio
    async def test_sort_by_title(self, engine, make_document):
        await engine.bulk_index([make_document(title=t) for t in ("Banana", "Apple", "Cherry")])

        ascending = await engine.search(
            SearchCriteria(sort_by=SortBy.TITLE, sort_direction=SortDirection.ASC)
        )
        descending = await engine.search(
            SearchCriteria(sort_by=SortBy.TITLE, sort_direction=SortDirection.DESC)
        )

        assert [i.title for i in ascending.items] == ["Apple", "Banana", "Cherry"]
        assert [i.title for i in descending.items] == ["Cherry", "Banana", "Apple"]

    @pytest.mark.asyncio
    async def test_highlights_and_summary(self, engine, make_document):
        await engine.index_document(make_document(title="React tips", content="Use react " + "x" * 300))

        result = await engine.search(SearchCriteria(query="react", enable_highlight=True))

        item = result.items[0]
        assert item.highlights["title"] == ["<mark>React</mark> tips"]
        assert item.highlights["content"][0].startswith("Use <mark>react</mark>")
        assert item.summary.endswith("…")
        assert item.matched_fields == ["title", "content"]

    @pytest.mark.asyncio
    async def test_highlights_disabled_by_default(self, engine, make_document):
        await engine.index_document(make_document(title="React tips"))

        result = await engine.search(SearchCriteria(query="react"))

        assert result.items[0].highlights is None


class TestSuggestions:

    @pytest.mark.asyncio
    async def test_popular_queries_then_titles(self, engine, session_factory, make_document):
        async with session_factory() as session:
            session.add_all([
                PopularSearch(query="react hooks", normalized_query="react hooks", search_count=5),
                PopularSearch(query="React Router", normalized_query="react router", search_count=9),
                PopularSearch(query="vue", normalized_query="vue", search_count=50),
            ])
            await session.commit()
        await engine.bulk_index([
            make_document(title="React Native Guide"),
            make_document(title="react hooks"),
        ])

        suggestions = await engine.get_suggestions("react", size=5)

        assert suggestions[:2] == ["React Router", "react hooks"]
        assert "React Native Guide" in suggestions
        assert len(suggestions) == 3

    @pytest.mark.asyncio
    async def test_size_limit(self, engine, make_document):
        await engine.bulk_index([make_document(title=f"React {i}") for i in range(10)])
        assert len(await engine.get_suggestions("react", size=3)) == 3

    @pytest.mark.asyncio
    async def test_blank_prefix(self, engine):
        assert await engine.get_suggestions("  ") == []


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_is_healthy(self, engine):
        assert await engine.is_healthy() is True

    @pytest.mark.asyncio
    async def test_rebuild_from_posts(self, engine, session_factory, add_post, make_document):
        await engine.index_document(make_document(title="Stale"))
        published = await add_post("Published", "body", tags=("python", "asyncio"))
        await add_post("Draft", is_published=False)
        await add_post("Removed", is_deleted=True)

        assert await engine.rebuild_index() is True

        async with session_factory() as session:
            rows = (await session.execute(select(SearchIndex))).scalars().all()
        assert len(rows) == 1
        assert rows[0].entity_id == published.id
        assert rows[0].entity_type == "Post"
        assert set(rows[0].keywords.split(", ")) == {"python", "asyncio"}

    @pytest.mark.asyncio
    async def test_rebuild_cancelled(self, engine, add_post):
        await add_post("Published")
        cancel = asyncio.Event()
        cancel.set()

        assert await engine.rebuild_index(cancel) is False

    @pytest.mark.asyncio
    async def test_stats(self, engine, make_document):
        empty = await engine.get_index_stats()
        assert empty.document_count == 0
        assert empty.health_status == "yellow"

        await engine.bulk_index([make_document(), make_document()])
        stats = await engine.get_index_stats()
        assert stats.document_count == 2
        assert stats.health_status == "green"
