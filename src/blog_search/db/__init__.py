"""
Database Package

Provides SQLAlchemy async session management and the record models
consumed by the search subsystem.
"""

from .session import get_async_session, async_engine, AsyncSessionLocal
from .models import Base, Post, Tag, SearchIndex, PopularSearch, utcnow
from .popular import record_search_query, get_popular_searches

__all__ = [
    "get_async_session",
    "async_engine",
    "AsyncSessionLocal",
    "Base",
    "Post",
    "Tag",
    "SearchIndex",
    "PopularSearch",
    "utcnow",
    "record_search_query",
    "get_popular_searches",
]
