"""Bookmark CLI commands."""

import asyncio

import typer
from rich.live import Live
from rich.prompt import Confirm

from src.smart_bookmarks.client.controller import BookmarkController
from src.smart_bookmarks.runtime.context import get_config

from .utils import bookmarks_table, build_controller, console


async def _signed_in_controller(live_updates: bool = False) -> BookmarkController:
    controller = build_controller(live_updates=live_updates)
    await controller.initialize()
    if controller.user is None:
        await controller.close()
        console.print("[yellow]Not signed in. Run 'smart-bookmarks login'.[/yellow]")
        raise typer.Exit(code=1)
    return controller


def _fail_on_error(controller: BookmarkController) -> None:
    if controller.error_message:
        console.print(f"[red]❌ {controller.error_message}[/red]")
        raise typer.Exit(code=1)


async def _list() -> None:
    async with await _signed_in_controller() as controller:
        _fail_on_error(controller)
        if not controller.bookmarks:
            console.print("[yellow]No bookmarks yet. Add one with 'smart-bookmarks add'.[/yellow]")
            return
        console.print(bookmarks_table(controller.bookmarks))


def list_bookmarks() -> None:
    """List your bookmarks, newest first."""
    asyncio.run(_list())


async def _add(url: str, title: str) -> None:
    async with await _signed_in_controller() as controller:
        controller.url = url
        controller.title = title
        if not await controller.create_bookmark():
            _fail_on_error(controller)
            console.print("[red]❌ URL and title must not be empty[/red]")
            raise typer.Exit(code=1)
        console.print(f"[green]✅ Added '{title}'[/green]")
        console.print(bookmarks_table(controller.bookmarks))


def add_bookmark(
    url: str = typer.Argument(..., help="URL to bookmark"),
    title: str = typer.Argument(..., help="Title to show"),
) -> None:
    """Add a bookmark."""
    asyncio.run(_add(url, title))


async def _delete(bookmark_id: int, force: bool) -> None:
    async with await _signed_in_controller() as controller:
        if not force and not Confirm.ask(f"Delete bookmark {bookmark_id}?"):
            console.print("[yellow]Deletion cancelled[/yellow]")
            return
        if not await controller.delete_bookmark(bookmark_id):
            _fail_on_error(controller)
            raise typer.Exit(code=1)
        console.print(f"[green]✅ Deleted bookmark {bookmark_id}[/green]")


def delete_bookmark(
    bookmark_id: int = typer.Argument(..., help="ID of the bookmark to delete"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """Delete one of your bookmarks."""
    asyncio.run(_delete(bookmark_id, force))


async def _watch(refresh_seconds: float) -> None:
    keepalive_seconds = get_config().realtime.keepalive_interval_seconds
    loop = asyncio.get_running_loop()

    async with await _signed_in_controller(live_updates=True) as controller:
        if not controller.subscribed:
            console.print("[yellow]Live updates unavailable; showing a snapshot.[/yellow]")

        next_check = loop.time() + keepalive_seconds
        with Live(bookmarks_table(controller.bookmarks), console=console) as live:
            while True:
                await asyncio.sleep(refresh_seconds)
                if loop.time() >= next_check:
                    # refreshes the token and resubscribes a dropped channel
                    await controller.keep_alive()
                    next_check = loop.time() + keepalive_seconds
                if controller.user is None:
                    live.update(bookmarks_table([], title="Signed out"))
                    break
                title = "Bookmarks (live)" if controller.subscribed else "Bookmarks"
                if controller.error_message:
                    title = f"{title} - {controller.error_message}"
                live.update(bookmarks_table(controller.bookmarks, title=title))


def watch(
    refresh: float = typer.Option(0.5, "--refresh", help="Screen refresh interval in seconds"),
) -> None:
    """Show your bookmarks and keep the list current as they change. Ctrl-C to stop."""
    try:
        asyncio.run(_watch(refresh))
    except KeyboardInterrupt:
        console.print("[yellow]Stopped watching[/yellow]")
