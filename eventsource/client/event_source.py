"""
MODULE OVERVIEW:
The public EventSource client.

WHAT IS HAPPENING HERE:
This is the only object callers talk to. It wires together the pieces:

    EventSourceClient
      ├── HandlerRegistry     (on_message / on_event / on_error / on_state_change)
      ├── Dispatcher          (packet -> handler, last id, retry hint)
      └── ConnectionManager   (HTTP attempts, retry timer, PacketAccumulator)

All of them share a single RLock, so registering a handler from another thread
while a packet is being dispatched is safe, and two concurrent connect() calls
can never open two streams.

    async with EventSourceClient(ClientConfig(base_url="http://localhost:8000")) as es:
        es.on_event("ping", print)
        await es.connect("/sse/stream")
        ...
"""
import asyncio
import concurrent.futures
import threading
from typing import Callable

from eventsource.client.connection_manager import ConnectionManager
from eventsource.client.dispatcher import Dispatcher, Handler, HandlerRegistry
from eventsource.client.transport import Transport
from eventsource.shared.client_utils import make_client_stats
from eventsource.shared.config import ClientConfig
from eventsource.shared.models import ConnectionState, RetryState


class EventSourceClient:
    protocol_name: str = "sse"

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport_factory: Callable[[ClientConfig], Transport] | None = None,
    ):
        self.config = config or ClientConfig.from_settings()
        self.stats = make_client_stats()

        self._lock = threading.RLock()
        self.registry = HandlerRegistry(self._lock)
        self.retry_state = RetryState(retry_period_ms=self.config.retry_period_ms)
        self.dispatcher = Dispatcher(self.registry, self.retry_state, self._lock)
        self.manager = ConnectionManager(
            self.config, self.dispatcher, self._lock, transport_factory, self.stats
        )

    @property
    def state(self) -> ConnectionState:
        return self.manager.state

    @property
    def retry_period_ms(self) -> int:
        with self._lock:
            return self.retry_state.retry_period_ms

    @property
    def events_received(self): return self.stats["events_received"]

    @property
    def reconnect_count(self): return self.stats["reconnect_count"]

    @property
    def retryable_responses(self): return self.stats["retryable_responses"]

    def connect(self, path: str, last_event_id: str | None = None) -> asyncio.Future:
        """Must be called from the event loop the client will live on."""
        return self.manager.connect(path, last_event_id)

    def close(self) -> concurrent.futures.Future | None:
        """
        Safe from any thread. Called on the loop thread the client is closed when
        this returns. Called from another thread the close is scheduled on the
        loop and takes effect asynchronously: the returned future completes once
        it has run, so `close().result()` blocks until the client is down. Inside
        the loop, `await aclose()` also waits for the attempt tasks to finish.
        """
        return self.manager.close()

    async def aclose(self) -> None:
        await self.manager.aclose()

    def on_message(self, handler: Handler | None) -> "EventSourceClient":
        self.registry.set_message_handler(handler)
        return self

    def on_event(self, event_name: str, handler: Handler | None) -> "EventSourceClient":
        self.registry.set_event_handler(event_name, handler)
        return self

    def on_error(self, handler: Handler | None) -> "EventSourceClient":
        self.registry.set_error_handler(handler)
        return self

    def on_state_change(self, handler: Handler | None) -> "EventSourceClient":
        self.registry.set_state_handler(handler)
        return self

    def last_id(self) -> str | None:
        with self._lock:
            return self.retry_state.last_event_id

    async def run(self, path: str, duration_s: float | None = None, last_event_id: str | None = None) -> None:
        """Connects, keeps the stream (and its reconnects) alive for `duration_s`, then closes."""
        try:
            await self.connect(path, last_event_id)
            if duration_s is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration_s)
        except asyncio.CancelledError:
            pass
        finally:
            await self.aclose()

    async def __aenter__(self) -> "EventSourceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
