"""Entity package: Bookmark."""

from .entity import Bookmark, BookmarkCreate

__all__ = ["Bookmark", "BookmarkCreate"]
