from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import anyio
import typer
from rich import box
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import ConfigError
from .console import CONSOLE_SELF, ConsoleTransport, demo_commands, run_console
from .dispatcher import Dispatcher
from .logging import setup_logging
from .settings import DispatcherSettings, load_settings_if_exists

_CONFIG_PATH_OPTION = typer.Option(
    None,
    "--config-path",
    help="Override the default config path.",
)


def _print_version_and_exit() -> None:
    typer.echo(__version__)
    raise typer.Exit()


def _version_callback(value: bool) -> None:
    if value:
        _print_version_and_exit()


def _exit_config_error(exc: ConfigError, *, code: int = 2) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=code) from exc


def _load(config_path: Path | None) -> tuple[DispatcherSettings, Path | None]:
    try:
        loaded = load_settings_if_exists(config_path)
    except ConfigError as exc:
        _exit_config_error(exc)
    if loaded is None:
        return DispatcherSettings(), None
    return loaded


app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="Chat command dispatcher with a local console for trying commands.",
)


@app.callback()
def app_main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        help="Show the version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Parley CLI."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=1)


@app.command()
def repl(
    config_path: Path | None = _CONFIG_PATH_OPTION,
    prefix: str | None = typer.Option(
        None, "--prefix", help="Use this prefix instead of the configured one."
    ),
    debug: bool = typer.Option(
        False,
        "--debug/--no-debug",
        help="Log every dispatcher step to stderr.",
    ),
) -> None:
    """Type messages as a local user and watch the demo commands answer."""
    settings, _ = _load(config_path)
    if prefix is not None:
        settings = settings.model_copy(update={"prefix": prefix})
    setup_logging(
        level=settings.logging.level, fmt=settings.logging.format, debug=debug
    )
    console = Console()
    transport = ConsoleTransport(console=console)
    dispatcher = Dispatcher(
        transport=transport, settings=settings, self_id=CONSOLE_SELF
    )
    for command in demo_commands():
        dispatcher.register(command)

    prefix_text = (
        settings.prefix if isinstance(settings.prefix, str) else settings.prefix[0]
    )
    names = ", ".join(
        f"{prefix_text}{command.aliases[0]}"
        for command in dispatcher.registry
        if command.aliases
    )
    console.print(f"[bold]parley {__version__}[/] {names} (ctrl-d to quit)")
    anyio.run(run_console, dispatcher, transport)


@app.command("config")
def show_config(config_path: Path | None = _CONFIG_PATH_OPTION) -> None:
    """Print the resolved dispatcher settings."""
    settings, path = _load(config_path)
    console = Console()
    table = Table(show_header=True, header_style="bold", box=box.SIMPLE)
    table.add_column("key")
    table.add_column("value")
    for key, value in _flatten(settings.model_dump()):
        table.add_row(key, repr(value))
    source = str(path) if path is not None else "defaults"
    console.print(f"[dim]source:[/] {source}")
    console.print(table)


def _flatten(data: dict, parent: str = "") -> list[tuple[str, object]]:
    rows: list[tuple[str, object]] = []
    for key, value in data.items():
        name = f"{parent}.{key}" if parent else key
        if isinstance(value, dict):
            rows.extend(_flatten(value, name))
        else:
            rows.append((name, value))
    return rows


def main() -> None:
    app()


if __name__ == "__main__":
    main()
