"""Sign-in related CLI commands."""

import asyncio

import typer

from src.smart_bookmarks.core.services import AuthClientService
from src.smart_bookmarks.runtime.context import get_config

from .loopback import wait_for_callback
from .utils import build_controller, console, get_session_storage, loopback_origin


async def _login(open_browser: bool) -> None:
    config = get_config()
    controller = build_controller(
        redirect_to=f"{loopback_origin()}{config.auth.callback_path}"
    )

    auth_url = await controller.sign_in()
    if auth_url is None:
        console.print(f"[red]❌ {controller.error_message}[/red]")
        raise typer.Exit(code=1)

    waiter = asyncio.create_task(
        wait_for_callback(
            AuthClientService(),
            get_session_storage(),
            config.cli.loopback_host,
            config.cli.loopback_port,
            config.cli.login_timeout_seconds,
        )
    )

    console.print("Open this URL to sign in:")
    console.print(f"[blue]{auth_url}[/blue]")
    if open_browser:
        typer.launch(auth_url)

    with console.status("Waiting for the browser to finish signing in..."):
        outcome = await waiter

    if outcome is None:
        console.print("[red]❌ Timed out waiting for sign-in[/red]")
        raise typer.Exit(code=1)
    if not outcome.authenticated:
        console.print("[red]❌ Sign-in failed. The code could not be exchanged.[/red]")
        raise typer.Exit(code=1)

    await controller.initialize()
    who = (controller.user.email or controller.user.id) if controller.user else "unknown"
    console.print(f"[green]✅ Signed in as {who}[/green]")


def login(
    browser: bool = typer.Option(
        True, "--browser/--no-browser", help="Open the sign-in URL in a browser"
    ),
) -> None:
    """Sign in with the identity provider."""
    asyncio.run(_login(browser))


async def _logout() -> None:
    controller = build_controller()
    await controller.initialize()
    if controller.user is None:
        console.print("[yellow]Not signed in[/yellow]")
        return
    await controller.sign_out()
    console.print("[green]✅ Signed out[/green]")


def logout() -> None:
    """Sign out and forget the stored session."""
    asyncio.run(_logout())


async def _whoami() -> None:
    controller = build_controller()
    await controller.initialize()
    user = controller.user
    if user is None:
        console.print("[yellow]Not signed in. Run 'smart-bookmarks login'.[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[bold]ID:[/bold]    {user.id}")
    console.print(f"[bold]Email:[/bold] {user.email or '-'}")


def whoami() -> None:
    """Show the signed-in account."""
    asyncio.run(_whoami())
