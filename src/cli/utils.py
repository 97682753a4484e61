"""Shared helpers for CLI commands."""

from rich.console import Console
from rich.table import Table

from src.smart_bookmarks.client.controller import BookmarkController
from src.smart_bookmarks.core.services import (
    AuthClientService,
    BookmarkService,
    RealtimeChangeFeed,
)
from src.smart_bookmarks.core.storage import FileSessionStorage
from src.smart_bookmarks.entities.bookmark import Bookmark
from src.smart_bookmarks.runtime.context import get_config

console = Console()


def get_session_storage() -> FileSessionStorage:
    """File storage holding the CLI's session."""
    return FileSessionStorage(get_config().cli.session_file)


def loopback_origin() -> str:
    cfg = get_config().cli
    return f"http://{cfg.loopback_host}:{cfg.loopback_port}"


def build_controller(
    *, live_updates: bool = False, redirect_to: str | None = None
) -> BookmarkController:
    """Wire a controller to the configured backend and the CLI session file."""
    config = get_config()
    change_feed = (
        RealtimeChangeFeed() if live_updates and config.realtime.enabled else None
    )
    return BookmarkController(
        AuthClientService(),
        BookmarkService(),
        get_session_storage(),
        change_feed,
        redirect_to=redirect_to,
    )


def bookmarks_table(bookmarks: list[Bookmark], title: str = "Bookmarks") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Title", style="green")
    table.add_column("URL", style="blue")
    table.add_column("Created", style="magenta")

    for bookmark in bookmarks:
        created = (
            bookmark.created_at.strftime("%Y-%m-%d %H:%M")
            if bookmark.created_at
            else ""
        )
        table.add_row(str(bookmark.id), bookmark.title, bookmark.url, created)
    return table
