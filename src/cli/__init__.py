"""Main CLI application module."""

import typer

from src.smart_bookmarks.api.utils.app_startup import configure_logging

from .bookmark_commands import add_bookmark, delete_bookmark, list_bookmarks, watch
from .session_commands import login, logout, whoami
from .utils import console

# Create the main CLI application
app = typer.Typer(
    help="🔖 Smart Bookmarks - your bookmarks from the terminal",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback()
def setup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    configure_logging(console_level="DEBUG" if verbose else "WARNING")


app.command("login")(login)
app.command("logout")(logout)
app.command("whoami")(whoami)
app.command("list")(list_bookmarks)
app.command("add")(add_bookmark)
app.command("delete")(delete_bookmark)
app.command("watch")(watch)


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, help="Host to bind (defaults to app.host)"),
    port: int | None = typer.Option(None, help="Port to bind (defaults to app.port)"),
) -> None:
    """Run the web server hosting the sign-in endpoints."""
    import uvicorn

    from src.smart_bookmarks.api.http.app import create_app
    from src.smart_bookmarks.runtime.config.config_template import (
        validate_config_env_vars,
    )
    from src.smart_bookmarks.runtime.context import get_config

    config = get_config()
    configure_logging()

    for var, description in validate_config_env_vars().items():
        console.print(f"[yellow]⚠️  {var} is not set ({description})[/yellow]")
    uvicorn.run(
        create_app(),
        host=host or config.app.host,
        port=port or config.app.port,
        access_log=False,  # We handle access logging in middleware
    )


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
