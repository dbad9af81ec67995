"""
MODULE OVERVIEW:
The Rich Terminal Dashboard.

WHAT IS HAPPENING HERE:
We use Rich to render a live view of one EventSource stream.
The client runs in a background task and every callback it fires (a message,
a named event, a state change, a retry reason) lands in the small deques below;
the Live loop redraws them four times a second.
"""
import asyncio
from collections import deque
from datetime import datetime

from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from eventsource.client.event_source import EventSourceClient
from eventsource.shared.models import ConnectionState

SSE_INFO = (
    "Server-Sent Events: one long-lived GET, the server pushes text packets.\n"
    "204/205 or a wrong Content-Type means 'come back later'; the client waits "
    "the retry period and reconnects with Last-Event-ID."
)

STATE_COLORS = {
    ConnectionState.CONNECTED: "green",
    ConnectionState.CONNECTING: "yellow",
    ConnectionState.RETRY_SCHEDULED: "yellow",
    ConnectionState.DISCONNECTED: "red",
}


class Visualizer:
    def __init__(self, client: EventSourceClient, path: str, event_names: list[str] | None = None):
        self.client = client
        self.path = path
        self.event_names = event_names or []
        self.recent_events = deque(maxlen=10)
        self.status = ConnectionState.DISCONNECTED
        self.timeline = deque(maxlen=5)

    def on_state_change(self, state: ConnectionState):
        self.status = state
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] State: {state.value}")

    def on_error(self, error):
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] {error}")

    def on_packet(self, event_name: str, data: str):
        ts = datetime.now().strftime("%H:%M:%S")
        data_str = data[:40] + "..." if len(data) > 40 else data
        self.recent_events.appendleft((ts, event_name, self.client.last_id() or "-", data_str))

    def attach(self):
        """Bridge the client hooks."""
        self.client.on_state_change(self.on_state_change)
        self.client.on_error(self.on_error)
        self.client.on_message(lambda data: self.on_packet("message", data))
        for name in self.event_names:
            self.client.on_event(name, lambda data, name=name: self.on_packet(name, data))

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline"),
            Layout(name="info")
        )

        color = STATE_COLORS.get(self.status, "red")
        layout["header"].update(Panel(f"[{color} bold]Stream: {self.path} | Status: {self.status.value}[/]", style=color))

        table = Table(title="Live Event Feed", expand=True)
        table.add_column("Time", justify="left", style="cyan", no_wrap=True)
        table.add_column("Event", style="magenta")
        table.add_column("Last Id", style="blue")
        table.add_column("Data", style="green")

        for e in self.recent_events:
            table.add_row(e[0], e[1], e[2], e[3])

        layout["left"].update(Panel(table, title="Feed"))

        stats_text = (
            f"Events Received: {self.client.events_received}\n"
            f"Reconnects: {self.client.reconnect_count}\n"
            f"Retryable Responses: {self.client.retryable_responses}\n"
            f"Bytes: {self.client.stats['bytes_received']}\n"
            f"Last-Event-ID: {self.client.last_id() or '-'}\n"
            f"Retry Period: {self.client.retry_period_ms} ms"
        )
        layout["stats"].update(Panel(stats_text, title="Connection Stats"))

        timeline_text = "\n".join(self.timeline)
        layout["timeline"].update(Panel(timeline_text, title="Timeline"))

        layout["info"].update(Panel(SSE_INFO, title="Protocol"))

        return layout

    async def run(self, duration_s: float | None, last_event_id: str | None = None):
        self.attach()
        client_task = asyncio.create_task(self.client.run(self.path, duration_s, last_event_id))

        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while not client_task.done():
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)

        # Surface a terminal connect failure to the caller
        await client_task
