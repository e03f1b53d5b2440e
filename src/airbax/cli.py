"""Airbax command line tools."""

from __future__ import annotations

import json

import typer
from rich.console import Console

from airbax.assembler import Outcome
from airbax.client import Client
from airbax.config import Mode, Settings, load_settings
from airbax.errors import ConfigurationError
from airbax.logging_utils import configure_logging

app = typer.Typer(name="airbax", help="Report exceptions to Airbrake and Errbit.", add_completion=False)
console = Console()


class AirbaxTestError(Exception):
    """Raised on purpose by ``airbax send-test``."""


def _load_settings() -> Settings:
    try:
        return load_settings()
    except ConfigurationError as exc:
        console.print(f"[red]configuration error:[/red] {exc}")
        raise typer.Exit(1) from exc


def _build_client(settings: Settings) -> Client:
    return Client.from_settings(settings)


@app.command("send-test")
def send_test(
    message: str = typer.Option("This is a test exception from airbax", "--message", "-m", help="Exception message"),
    timeout: float = typer.Option(10.0, "--timeout", help="Seconds to wait for the API response"),
) -> None:
    """Send one test notice and wait for the API to answer."""
    settings = _load_settings()
    configure_logging(settings.log_level)
    client = _build_client(settings)

    with client:
        try:
            raise AirbaxTestError(message)
        except AirbaxTestError as exc:
            accepted = client.report(exc, params={"source": "airbax send-test"})
        finished = client.flush(timeout)

    if client.mode is not Mode.ENABLED:
        console.print(f"reporting mode is [bold]{client.mode}[/bold]; nothing was sent")
        return
    if not accepted:
        console.print("[red]the test notice was dropped[/red]")
        raise typer.Exit(1)
    if not finished:
        console.print(f"[red]no answer from the API within {timeout}s[/red]")
        raise typer.Exit(1)

    outcomes = client.outcomes()
    if outcomes.get(Outcome.SUCCESS):
        console.print("[green]test notice delivered[/green]")
        return
    summary = ", ".join(f"{outcome}={count}" for outcome, count in sorted(outcomes.items()))
    console.print(f"[red]test notice failed:[/red] {summary}")
    raise typer.Exit(1)


@app.command("show-config")
def show_config() -> None:
    """Print the resolved configuration with the project key masked."""
    settings = _load_settings()
    console.print_json(json.dumps(settings.masked(), default=str))
