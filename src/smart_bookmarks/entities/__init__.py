"""Entities module.

Each entity has its own package. Bookmarks are persisted by the managed
backend, so entities here are plain Pydantic models without table mappings.
"""

from .bookmark import Bookmark, BookmarkCreate

__all__ = ["Bookmark", "BookmarkCreate"]
