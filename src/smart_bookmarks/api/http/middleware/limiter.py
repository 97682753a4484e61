"""Per-client request quotas for the auth endpoints.

Routes name a policy (``login``, ``callback``, ...) whose quota comes from the
``rate_limiter`` config section. Each policy keeps a sliding window per client
address, resolved the same way request logging resolves it.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request
from loguru import logger

from src.smart_bookmarks.core.security import client_address
from src.smart_bookmarks.runtime.context import get_config


class SlidingWindow:
    """Counts requests per key over the last ``window_seconds``."""

    def __init__(self, requests: int, window_seconds: int) -> None:
        self.requests = requests
        self.window_seconds = window_seconds
        self._hits: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self._last_prune = time.monotonic()

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    async def hit(self, key: str, now: float | None = None) -> float | None:
        """Record one request for ``key``.

        Returns:
            None when the request is allowed, otherwise the seconds until
            the oldest counted request leaves the window.
        """
        now = time.monotonic() if now is None else now
        window_start = now - self.window_seconds
        async with self._lock:
            self._prune(now)
            hits = self._hits[key]
            while hits and hits[0] <= window_start:
                hits.popleft()
            if len(hits) >= self.requests:
                return hits[0] + self.window_seconds - now
            hits.append(now)
        return None

    def _prune(self, now: float) -> None:
        # forget idle clients once per window
        if now - self._last_prune < self.window_seconds:
            return
        self._last_prune = now
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - self.window_seconds]
        for key in idle:
            del self._hits[key]


_windows: dict[tuple[str, int, int], SlidingWindow] = {}


def get_window(policy: str) -> SlidingWindow:
    """The window enforcing ``policy`` under the active configuration."""
    rule = get_config().rate_limiter.rule_for(policy)
    key = (policy, rule.requests, rule.window_seconds)
    if key not in _windows:
        _windows[key] = SlidingWindow(rule.requests, rule.window_seconds)
    return _windows[key]


def rate_limit(policy: str = "default") -> Callable[[Request], Awaitable[None]]:
    """Return a dependency enforcing the quota of ``policy``.

    Raises 429 with a ``Retry-After`` header once a client exhausts it.
    """

    async def dependency(request: Request) -> None:
        if not get_config().rate_limiter.enabled:
            return
        client = client_address(request)
        retry_after = await get_window(policy).hit(client)
        if retry_after is not None:
            logger.warning("Rate limit '{}' exceeded by {}", policy, client)
            raise HTTPException(
                status_code=429,
                detail="Too Many Requests",
                headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
            )

    return dependency


def reset_rate_limits() -> None:
    """Forget every window and its tracked clients."""
    if _windows:
        logger.info("Clearing {} rate limit windows", len(_windows))
    _windows.clear()
