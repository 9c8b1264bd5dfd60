import uuid
from typing import Callable, Optional

import pytest

from blog_search.db.models import Base, Post, SearchIndex, Tag
from blog_search.db.session import create_engine, create_session_factory


@pytest.fixture
async def session_factory(tmp_path):
    """Async session factory over a fresh SQLite database file."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'search.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def make_document() -> Callable[..., SearchIndex]:
    def _make(
        title: Optional[str] = "Untitled",
        content: Optional[str] = "",
        keywords: Optional[str] = None,
        entity_type: str = "Post",
        entity_id: Optional[uuid.UUID] = None,
    ) -> SearchIndex:
        return SearchIndex.create(
            entity_type=entity_type,
            entity_id=entity_id or uuid.uuid4(),
            title=title,
            content=content,
            keywords=keywords,
        )

    return _make


@pytest.fixture
def add_post(session_factory):
    """Persist a post (optionally tagged) and return it."""
    async def _add(
        title: str,
        content: str = "",
        tags=(),
        is_published: bool = True,
        is_deleted: bool = False,
    ) -> Post:
        async with session_factory() as session:
            post = Post(
                id=uuid.uuid4(),
                title=title,
                content=content,
                author_id=uuid.uuid4(),
                is_published=is_published,
                is_deleted=is_deleted,
                tags=[Tag(id=uuid.uuid4(), name=name) for name in tags],
            )
            session.add(post)
            await session.commit()
            return post

    return _add


@pytest.fixture
def store_documents(session_factory):
    """Write index records straight to the table, bypassing any engine."""
    async def _store(*documents: SearchIndex) -> None:
        async with session_factory() as session:
            session.add_all(d.clone() for d in documents)
            await session.commit()

    return _store
