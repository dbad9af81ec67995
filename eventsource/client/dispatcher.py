"""
MODULE OVERVIEW:
Handler registry and packet dispatch.

WHAT IS HAPPENING HERE:
A completed packet comes in from the PacketAccumulator. Before any callback
runs we record its `id` (the value we will send back as `Last-Event-ID` on the
next reconnect) and its `retry` hint. Only then do we pick a handler:

    no `event` field   -> the default message handler (on_message)
    `event: <name>`    -> the handler registered for <name>, or nobody

A named event never falls back to the default handler.
"""
import asyncio
import inspect
import threading
from typing import Any, Callable

from loguru import logger

from eventsource.shared.models import EventPacket, RetryState

Handler = Callable[[Any], Any]


class HandlerRegistry:
    """
    One callback per event name, last registration wins.
    The default message handler and the error observer live in their own slots,
    so an event legitimately named "message" or "error" never collides with them.
    """

    def __init__(self, lock=None):
        self._lock = lock or threading.RLock()
        self._message_handler: Handler | None = None
        self._event_handlers: dict[str, Handler] = {}
        self._error_handler: Handler | None = None
        self._state_handler: Handler | None = None

    def set_message_handler(self, handler: Handler | None) -> None:
        with self._lock:
            self._message_handler = handler

    def set_event_handler(self, name: str, handler: Handler | None) -> None:
        with self._lock:
            if handler is None:
                self._event_handlers.pop(name, None)
            else:
                self._event_handlers[name] = handler

    def set_error_handler(self, handler: Handler | None) -> None:
        with self._lock:
            self._error_handler = handler

    def set_state_handler(self, handler: Handler | None) -> None:
        with self._lock:
            self._state_handler = handler

    @property
    def message_handler(self) -> Handler | None:
        with self._lock:
            return self._message_handler

    @property
    def error_handler(self) -> Handler | None:
        with self._lock:
            return self._error_handler

    @property
    def state_handler(self) -> Handler | None:
        with self._lock:
            return self._state_handler

    def event_handler(self, name: str) -> Handler | None:
        with self._lock:
            return self._event_handlers.get(name)


class Dispatcher:
    def __init__(self, registry: HandlerRegistry, retry_state: RetryState, lock=None):
        self.registry = registry
        self.retry_state = retry_state
        self._lock = lock or threading.RLock()
        # Strong references so scheduled coroutine handlers are not garbage collected mid-flight
        self._handler_tasks: set[asyncio.Task] = set()

    def dispatch(self, packet: EventPacket) -> bool:
        """Returns True when a handler was invoked for the packet."""
        with self._lock:
            if packet.id is not None:
                self.retry_state.last_event_id = packet.id
            if packet.retry is not None:
                logger.debug(f"protocol=sse event=retry_override retry_ms={packet.retry}")
                self.retry_state.retry_period_ms = packet.retry

        # An empty event name is the same as no event name
        if packet.event:
            handler = self.registry.event_handler(packet.event)
            label = packet.event
        else:
            handler = self.registry.message_handler
            label = "message"

        if handler is None:
            logger.debug(f"protocol=sse event=unhandled name={label} id={packet.id}")
            return False

        self.notify(handler, packet.data, label)
        return True

    def notify(self, handler: Handler, value: Any, label: str) -> None:
        """
        Calls a user callback with fault isolation.
        A coroutine returned by the callback is handed off to its own task so a
        slow handler never stalls the read loop.
        """
        try:
            result = handler(value)
        except Exception as e:
            logger.exception(f"protocol=sse event=handler_error handler={label} reason='{e}'")
            return

        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(f"protocol=sse event=handler_dropped handler={label} reason='no running event loop'")
                if inspect.iscoroutine(result):
                    result.close()
                return
            task = asyncio.ensure_future(result, loop=loop)
            self._handler_tasks.add(task)
            task.add_done_callback(lambda t: self._on_handler_done(t, label))

    def _on_handler_done(self, task: asyncio.Task, label: str) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"protocol=sse event=handler_error handler={label} reason='{exc}'")

    async def wait_for_handlers(self) -> None:
        """Waits for scheduled coroutine handlers; mostly useful in tests and shutdown."""
        if self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)
