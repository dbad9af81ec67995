"""
CLI entrypoint for the EventSource client.
"""
import asyncio
import sys
from typing import List, Optional

import typer
from loguru import logger

from eventsource.client.event_source import EventSourceClient
from eventsource.client.visualizer import Visualizer
from eventsource.shared.config import ClientConfig, settings
from eventsource.shared.errors import EventSourceError

app = typer.Typer(help="EventSource (Server-Sent Events) client CLI")


def build_client(base_url: Optional[str], retry_period_ms: Optional[int]) -> EventSourceClient:
    overrides = {}
    if base_url:
        overrides["base_url"] = base_url
    if retry_period_ms is not None:
        overrides["retry_period_ms"] = retry_period_ms
    return EventSourceClient(ClientConfig.from_settings(**overrides))


@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="Log level for the stderr sink")):
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())


@app.command()
def client(
    path: str = typer.Option(..., help="Stream path, relative to the base URL"),
    base_url: Optional[str] = typer.Option(None, help="Server base URL (defaults to EVENTSOURCE_BASE_URL)"),
    last_event_id: Optional[str] = typer.Option(None, help="Resume from this event id"),
    retry_period_ms: Optional[int] = typer.Option(None, help="Delay before reconnect attempts"),
    duration: float = typer.Option(60.0, help="Duration to run the client in seconds"),
    event: Optional[List[str]] = typer.Option(None, "--event", "-e", help="Named event to display (repeatable)"),
):
    """Run the client with the rich visualizer dashboard."""
    c = build_client(base_url, retry_period_ms)
    visualizer = Visualizer(c, path, event)
    try:
        asyncio.run(visualizer.run(duration, last_event_id))
    except KeyboardInterrupt:
        pass
    except EventSourceError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)


@app.command()
def tail(
    path: str = typer.Option(..., help="Stream path, relative to the base URL"),
    base_url: Optional[str] = typer.Option(None, help="Server base URL (defaults to EVENTSOURCE_BASE_URL)"),
    last_event_id: Optional[str] = typer.Option(None, help="Resume from this event id"),
    retry_period_ms: Optional[int] = typer.Option(None, help="Delay before reconnect attempts"),
    duration: Optional[float] = typer.Option(None, help="Stop after this many seconds (default: run forever)"),
    event: Optional[List[str]] = typer.Option(None, "--event", "-e", help="Named event to print (repeatable)"),
):
    """Print every received event as `<name>\\t<data>` lines."""
    c = build_client(base_url, retry_period_ms)

    def printer(name: str):
        return lambda data: typer.echo(f"{name}\t{data}")

    c.on_message(printer("message"))
    for name in event or []:
        c.on_event(name, printer(name))
    c.on_error(lambda error: typer.echo(f"retry\t{error}", err=True))

    try:
        asyncio.run(c.run(path, duration, last_event_id))
    except KeyboardInterrupt:
        pass
    except EventSourceError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1)
    typer.echo(f"last-event-id\t{c.last_id() or ''}", err=True)


@app.command("settings")
def show_settings():
    """Print the effective client configuration as JSON."""
    typer.echo(ClientConfig.from_settings().model_dump_json(indent=2))


if __name__ == "__main__":
    app()
