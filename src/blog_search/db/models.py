"""
SQLAlchemy Models

Defines the relational records consumed by the search subsystem:
- SearchIndex (the indexed document and its per-field weights)
- Post and Tag (authoritative blog content, read-only from here)
- PopularSearch (query popularity used for suggestion ranking)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..constants import DEFAULT_LANGUAGE, POST_ENTITY_TYPE


DEFAULT_TITLE_WEIGHT = 3.0
DEFAULT_CONTENT_WEIGHT = 1.0
DEFAULT_KEYWORD_WEIGHT = 2.0


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the `DateTime` columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Blog Content (owned by the blog service)
# ---------------------------------------------------------------------

post_tags = Table(
    "post_tags",
    Base.metadata,
    Column("post_id", Uuid, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Uuid, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)


class Post(Base):
    """
    A blog post. Only published, non-deleted posts are indexable.
    """
    __tablename__ = "posts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    author_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    tags: Mapped[List[Tag]] = relationship(Tag, secondary=post_tags, lazy="selectin")

    __table_args__ = (
        Index("idx_post_published", "is_published", "is_deleted"),
    )


# ---------------------------------------------------------------------
# Search Index Record
# ---------------------------------------------------------------------

class SearchIndex(Base):
    """
    A single searchable document.

    `(entity_type, entity_id)` is the natural key: re-indexing the same key
    updates the existing row in place.
    """
    __tablename__ = "search_index"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    keywords: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language: Mapped[str] = mapped_column(String(10), nullable=False, default=DEFAULT_LANGUAGE)
    title_weight: Mapped[float] = mapped_column(Float, nullable=False, default=DEFAULT_TITLE_WEIGHT)
    content_weight: Mapped[float] = mapped_column(Float, nullable=False, default=DEFAULT_CONTENT_WEIGHT)
    keyword_weight: Mapped[float] = mapped_column(Float, nullable=False, default=DEFAULT_KEYWORD_WEIGHT)
    indexed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_search_index_entity"),
        Index("idx_search_index_updated", "last_updated_at", "indexed_at"),
    )

    @classmethod
    def create(
        cls,
        entity_type: str,
        entity_id: uuid.UUID,
        title: Optional[str],
        content: Optional[str],
        keywords: Optional[str] = None,
        language: str = DEFAULT_LANGUAGE,
    ) -> "SearchIndex":
        return cls(
            id=uuid.uuid4(),
            entity_type=entity_type,
            entity_id=entity_id,
            title=title,
            content=content,
            keywords=keywords,
            language=language,
            title_weight=DEFAULT_TITLE_WEIGHT,
            content_weight=DEFAULT_CONTENT_WEIGHT,
            keyword_weight=DEFAULT_KEYWORD_WEIGHT,
            indexed_at=utcnow(),
            last_updated_at=None,
            is_active=True,
        )

    @classmethod
    def from_post(cls, post: Post, language: str = DEFAULT_LANGUAGE) -> "SearchIndex":
        """Derive an index document from a post; tag names become keywords."""
        tag_names = [t.name for t in (post.tags or []) if t.name]
        return cls.create(
            entity_type=POST_ENTITY_TYPE,
            entity_id=post.id,
            title=post.title,
            content=post.content,
            keywords=", ".join(tag_names) if tag_names else None,
            language=language,
        )

    def update_index(
        self,
        title: Optional[str],
        content: Optional[str],
        keywords: Optional[str],
    ) -> None:
        self.title = title
        self.content = content
        self.keywords = keywords
        self.last_updated_at = utcnow()

    def set_weights(self, title_weight: float, content_weight: float, keyword_weight: float) -> None:
        self.title_weight = title_weight
        self.content_weight = content_weight
        self.keyword_weight = keyword_weight

    def touch(self) -> None:
        self.last_updated_at = utcnow()

    def deactivate(self) -> None:
        self.is_active = False
        self.last_updated_at = utcnow()

    def apply(self, other: "SearchIndex") -> None:
        """
        Take over `other`'s content, language, weights and activity.

        The change time is `other`'s own (its update time, else its creation
        time), so re-applying a stored record leaves it unchanged.
        """
        self.title = other.title
        self.content = other.content
        self.keywords = other.keywords
        self.language = other.language
        self.set_weights(other.title_weight, other.content_weight, other.keyword_weight)
        self.is_active = other.is_active
        self.last_updated_at = other.last_updated_at or other.indexed_at

    def clone(self) -> "SearchIndex":
        """
        Detached copy with identical field values.

        Engines persist clones so a caller's instance is never attached to
        more than one session.
        """
        return SearchIndex(
            id=self.id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            title=self.title,
            content=self.content,
            keywords=self.keywords,
            language=self.language,
            title_weight=self.title_weight,
            content_weight=self.content_weight,
            keyword_weight=self.keyword_weight,
            indexed_at=self.indexed_at,
            last_updated_at=self.last_updated_at,
            is_active=self.is_active,
        )

    def to_document(self) -> Dict[str, Any]:
        """Source body stored in the search cluster."""
        return {
            "id": str(self.id),
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "title": self.title,
            "content": self.content,
            "keywords": self.keywords,
            "language": self.language,
            "title_weight": self.title_weight,
            "content_weight": self.content_weight,
            "keyword_weight": self.keyword_weight,
            "indexed_at": self.indexed_at.isoformat() if self.indexed_at else None,
            "last_updated_at": self.last_updated_at.isoformat() if self.last_updated_at else None,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<SearchIndex {self.entity_type}:{self.entity_id}>"


# ---------------------------------------------------------------------
# Popular Searches
# ---------------------------------------------------------------------

class PopularSearch(Base):
    """
    Aggregated query popularity, keyed by the normalized query text.
    """
    __tablename__ = "popular_searches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    query: Mapped[str] = mapped_column(String(200), nullable=False)
    normalized_query: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    search_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_searched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_popular_search_count", "search_count"),
    )
