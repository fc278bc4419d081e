from __future__ import annotations

import typer

from .commands import cmd_ping, cmd_time_settings, configure_logging

app = typer.Typer(add_completion=False)


@app.callback()
def _setup(log_level: str = typer.Option("INFO", help="Logging level")) -> None:
    configure_logging(log_level)


@app.command()
def ping() -> None:
    """
    Sanity check: config files, env wiring, and the date cache.
    """
    cmd_ping()


@app.command("time-settings")
def time_settings() -> None:
    """Age window and strategy for every known source."""
    cmd_time_settings()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
