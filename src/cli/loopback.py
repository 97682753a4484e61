"""One-shot local callback server used by ``smart-bookmarks login``.

The provider redirects the browser to this server, which runs the same
session handshake as the web application but writes the session to the CLI
session file.
"""

import asyncio

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse, RedirectResponse

from src.smart_bookmarks.core.services import (
    AuthClientService,
    HandshakeOutcome,
    complete_handshake,
)
from src.smart_bookmarks.core.storage import SessionStorage
from src.smart_bookmarks.runtime.context import get_config

_DONE_PATH = "/auth/done"

_PAGE = """<!doctype html>
<html><head><title>{title}</title></head>
<body><h1>{title}</h1><p>{message}</p></body></html>
"""


def create_loopback_app(
    auth_client: AuthClientService,
    storage: SessionStorage,
    origin: str,
    result: "asyncio.Future[HandshakeOutcome]",
) -> FastAPI:
    """Build the callback app; ``result`` resolves on the first callback."""
    config = get_config()
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(config.auth.callback_path)
    async def callback(
        code: str | None = None,
        next_path: str | None = Query(default=None, alias="next"),
    ) -> RedirectResponse:
        outcome = await complete_handshake(
            auth_client,
            storage,
            origin=origin,
            code=code,
            next_path=next_path or _DONE_PATH,
            error_path=config.auth.error_path,
            default_next=_DONE_PATH,
        )
        if not result.done():
            result.set_result(outcome)
        return RedirectResponse(url=outcome.redirect_url, status_code=302)

    @app.get(_DONE_PATH, response_class=HTMLResponse)
    async def done() -> HTMLResponse:
        return HTMLResponse(
            _PAGE.format(
                title="Signed in",
                message="You can close this window and return to the terminal.",
            )
        )

    @app.get(config.auth.error_path, response_class=HTMLResponse)
    async def error() -> HTMLResponse:
        return HTMLResponse(
            _PAGE.format(
                title="Sign-in failed",
                message="The sign-in link was invalid or has expired. Run login again.",
            )
        )

    return app


async def wait_for_callback(
    auth_client: AuthClientService,
    storage: SessionStorage,
    host: str,
    port: int,
    timeout: float,
) -> HandshakeOutcome | None:
    """Serve the callback app until one callback arrives or ``timeout`` passes.

    Returns:
        The handshake outcome, or None on timeout.
    """
    origin = f"http://{host}:{port}"
    result: asyncio.Future[HandshakeOutcome] = asyncio.get_running_loop().create_future()
    app = create_loopback_app(auth_client, storage, origin, result)

    server = uvicorn.Server(
        uvicorn.Config(app, host=host, port=port, log_level="warning", access_log=False)
    )
    serve_task = asyncio.create_task(server.serve())
    try:
        outcome = await asyncio.wait_for(asyncio.shield(result), timeout)
        # let the browser follow the redirect to the landing page
        await asyncio.sleep(0.5)
        return outcome
    except asyncio.TimeoutError:
        return None
    finally:
        server.should_exit = True
        await serve_task
