"""Bookmark CRUD against the managed data API.

Calls go through a client opened with the signed-in user's session; row-level
access policy on the backend decides which rows each call may see or change.
"""

from typing import Any

import httpx
from loguru import logger
from postgrest.exceptions import APIError
from pydantic import ValidationError
from supabase import AsyncClient

from src.smart_bookmarks.core.services.exceptions import BackendError, backend_error
from src.smart_bookmarks.entities.bookmark import Bookmark, BookmarkCreate
from src.smart_bookmarks.runtime.config.config_data import BackendConfig
from src.smart_bookmarks.runtime.context import get_config

BOOKMARK_COLUMNS = "id,url,title,user_id,created_at"


class BookmarkService:
    """select / insert / delete on the bookmarks table."""

    def __init__(self, backend_config: BackendConfig | None = None):
        self._backend = backend_config or get_config().backend

    def _table(self, client: AsyncClient):
        return client.table(self._backend.bookmarks_table)

    async def list_bookmarks(self, client: AsyncClient) -> list[Bookmark]:
        """All bookmarks visible to the caller, newest first."""
        query = self._table(client).select(BOOKMARK_COLUMNS).order("created_at", desc=True)
        return self._parse_rows(await self._execute(query))

    async def create_bookmark(self, client: AsyncClient, bookmark: BookmarkCreate) -> Bookmark:
        rows = self._parse_rows(await self._execute(self._table(client).insert(bookmark.model_dump())))
        if not rows:
            raise BackendError("Insert returned no row")
        logger.debug("Created bookmark {}", rows[0].id)
        return rows[0]

    async def delete_bookmark(self, client: AsyncClient, bookmark_id: int) -> None:
        """Delete one bookmark by id.

        Raises:
            BackendError: If the call fails or no row was deleted (missing or
                not owned by the caller).
        """
        deleted = await self._execute(self._table(client).delete().eq("id", bookmark_id))
        if not deleted:
            raise BackendError(
                f"Bookmark {bookmark_id} not found or not permitted", code="not_found"
            )
        logger.debug("Deleted bookmark {}", bookmark_id)

    @staticmethod
    async def _execute(query: Any) -> Any:
        try:
            response = await query.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.debug("Data API call failed: {}", e)
            raise backend_error(e) from e
        return response.data

    @staticmethod
    def _parse_rows(body: Any) -> list[Bookmark]:
        if body is None:
            return []
        if not isinstance(body, list):
            raise BackendError("Unexpected response shape from data API")
        try:
            return [Bookmark.model_validate(row) for row in body]
        except ValidationError as e:
            raise BackendError("Malformed bookmark row from data API") from e
