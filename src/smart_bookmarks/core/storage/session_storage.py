"""Session storage adapters for the backend auth client.

The auth client keeps the session (and the PKCE code verifier of a sign-in in
progress) in a small key/value store it reads and writes through
``AsyncSupportedStorage``. The server backs it with cookies, the command line
client with a JSON file, and tests with the library's in-memory storage.
"""

from __future__ import annotations

import base64
import json
import os
from pathlib import Path
from typing import Any

from fastapi import Request, Response
from loguru import logger
from supabase_auth import AsyncSupportedStorage
from supabase_auth.constants import STORAGE_KEY

SessionStorage = AsyncSupportedStorage

SESSION_KEY = STORAGE_KEY
CODE_VERIFIER_KEY = f"{STORAGE_KEY}-code-verifier"

_BASE64_PREFIX = "base64-"


class FileSessionStorage(AsyncSupportedStorage):
    """JSON file storage for the command line client.

    The file is rewritten on every change and created with owner-only
    permissions since it holds refresh tokens.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable session file {}: {}", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self._path)

    async def get_item(self, key: str) -> str | None:
        return self._read().get(key)

    async def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    async def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


def encode_cookie_value(value: str) -> str:
    """Encode a stored value so it is safe inside a cookie."""
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")
    return _BASE64_PREFIX + encoded


def decode_cookie_value(raw: str) -> str:
    """Inverse of :func:`encode_cookie_value`; plain values pass through."""
    if not raw.startswith(_BASE64_PREFIX):
        return raw
    payload = raw[len(_BASE64_PREFIX):]
    padding = "=" * (-len(payload) % 4)
    return base64.urlsafe_b64decode(payload + padding).decode("utf-8")


class CookieSessionStorage(AsyncSupportedStorage):
    """Cookie-backed storage bound to one request/response cycle.

    Reads come from the incoming request cookies. Writes are staged and only
    reach the client when :meth:`apply` is called on the outgoing response, so
    a handler can decide to attach either the full cookie set or nothing.

    Keys under the auth client's storage key are renamed to ``cookie_name``
    (``sb-<project>-auth-token``), the name browser clients of the same
    project use. Values longer than ``chunk_size`` are split across
    ``<name>.0``, ``<name>.1``, ... cookies to stay under browser cookie size
    limits.
    """

    def __init__(
        self,
        request: Request,
        cookie_options: dict[str, Any],
        *,
        cookie_name: str | None = None,
        chunk_size: int = 3180,
        max_age: int | None = None,
        max_age_overrides: dict[str, int] | None = None,
    ):
        self._cookies: dict[str, str] = dict(request.cookies)
        self._options = cookie_options
        self._cookie_name = cookie_name
        self._chunk_size = chunk_size
        self._max_age = max_age
        self._max_age_overrides = max_age_overrides or {}
        # cookie name -> (value, max-age), or None for deletion
        self._pending: dict[str, tuple[str, int | None] | None] = {}

    def cookie_name(self, key: str) -> str:
        if self._cookie_name and key.startswith(SESSION_KEY):
            return self._cookie_name + key[len(SESSION_KEY):]
        return key

    def _current(self, name: str) -> str | None:
        if name in self._pending:
            staged = self._pending[name]
            return staged[0] if staged is not None else None
        return self._cookies.get(name)

    def _chunk_names(self, name: str) -> list[str]:
        names = []
        index = 0
        while self._current(f"{name}.{index}") is not None:
            names.append(f"{name}.{index}")
            index += 1
        return names

    async def get_item(self, key: str) -> str | None:
        name = self.cookie_name(key)
        whole = self._current(name)
        if whole is not None:
            raw = whole
        else:
            chunks = self._chunk_names(name)
            if not chunks:
                return None
            raw = "".join(self._current(chunk) or "" for chunk in chunks)

        try:
            return decode_cookie_value(raw)
        except (ValueError, UnicodeDecodeError):
            logger.warning("Discarding undecodable cookie value for {}", name)
            return None

    async def set_item(self, key: str, value: str) -> None:
        await self.remove_item(key)
        name = self.cookie_name(key)
        max_age = self._max_age_overrides.get(key, self._max_age)
        encoded = encode_cookie_value(value)
        if len(encoded) <= self._chunk_size:
            self._pending[name] = (encoded, max_age)
            return

        for index, start in enumerate(range(0, len(encoded), self._chunk_size)):
            self._pending[f"{name}.{index}"] = (encoded[start : start + self._chunk_size], max_age)

    async def remove_item(self, key: str) -> None:
        name = self.cookie_name(key)
        for cookie in [name, *self._chunk_names(name)]:
            if self._current(cookie) is not None:
                self._pending[cookie] = None

    def has_pending_changes(self) -> bool:
        return bool(self._pending)

    def discard(self) -> None:
        """Drop every staged write."""
        self._pending.clear()

    def apply(self, response: Response) -> None:
        """Write every staged change onto ``response`` as Set-Cookie headers."""
        for name, staged in self._pending.items():
            if staged is None:
                response.delete_cookie(
                    name,
                    path=self._options.get("path", "/"),
                    secure=self._options.get("secure", False),
                    httponly=self._options.get("httponly", True),
                    samesite=self._options.get("samesite", "lax"),
                )
                continue

            value, max_age = staged
            response.set_cookie(key=name, value=value, max_age=max_age, **self._options)
        self._pending.clear()
