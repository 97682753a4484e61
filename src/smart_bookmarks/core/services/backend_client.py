"""Construction of ``supabase`` clients for the managed backend.

A client is bound to one session storage. The web application builds one per
request around that request's cookies; the command line client builds them
around its session file.
"""

import httpx
from loguru import logger
from supabase import AsyncClient, AsyncClientOptions, AsyncSupabaseException, acreate_client
from supabase_auth import AsyncSupportedStorage

from src.smart_bookmarks import __version__
from src.smart_bookmarks.core.services.exceptions import BackendError
from src.smart_bookmarks.runtime.config.config_data import BackendConfig
from src.smart_bookmarks.runtime.context import get_config

CLIENT_INFO = f"smart-bookmarks-py/{__version__}"


class BackendClientFactory:
    """Builds async ``supabase`` clients for the configured project.

    ``transport`` routes every HTTP call through the given ``httpx`` transport;
    tests point it at an in-process fake backend.
    """

    def __init__(
        self,
        backend_config: BackendConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._backend = backend_config or get_config().backend
        self._transport = transport

    @property
    def backend(self) -> BackendConfig:
        return self._backend

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._backend.request_timeout)

    async def create(self, storage: AsyncSupportedStorage) -> AsyncClient:
        """Build a client keeping its session in ``storage``.

        Token refresh is left to the callers, which refresh on demand.

        Raises:
            BackendError: If the project URL or API key is unusable.
        """
        if not self._backend.anon_key:
            raise BackendError("Backend API key is not configured", code="missing_api_key")

        options = AsyncClientOptions(
            schema=self._backend.db_schema,
            headers={"X-Client-Info": CLIENT_INFO},
            auto_refresh_token=False,
            persist_session=True,
            storage=storage,
            flow_type="pkce",
            postgrest_client_timeout=self._backend.request_timeout,
            httpx_client=self.http_client() if self._transport is not None else None,
        )
        try:
            return await acreate_client(self._backend.url, self._backend.anon_key, options=options)
        except AsyncSupabaseException as e:
            logger.error("Backend client misconfigured: {}", e)
            raise BackendError(f"Backend client misconfigured: {e}") from e
