"""Entity: Bookmark."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Bookmark(BaseModel):
    """A URL and title saved by one account.

    Rows are created and deleted but never edited. The identifier and creation
    timestamp are assigned by the backend.
    """

    id: int = Field(description="Backend-assigned identifier")
    url: str = Field(description="Bookmarked URL")
    title: str = Field(description="Display title")
    user_id: str = Field(description="Owning account identifier")
    created_at: datetime | None = Field(default=None, description="Creation time")

    def __eq__(self, other: Any) -> bool:
        """Compare bookmarks by identity and content."""
        if not isinstance(other, Bookmark):
            return False

        return (
            self.id == other.id
            and self.url == other.url
            and self.title == other.title
            and self.user_id == other.user_id
        )

    def __hash__(self) -> int:
        return hash((self.id, self.url, self.title, self.user_id))


class BookmarkCreate(BaseModel):
    """Row submitted on insert. The owner is always sent explicitly."""

    url: str
    title: str
    user_id: str

    @field_validator("url", "title", "user_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value
