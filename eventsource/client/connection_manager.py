"""
MODULE OVERVIEW:
The connection/reconnection state machine.
This file is the heartbeat of the client. It owns the lifetime of every HTTP
attempt and decides what a response means.

WHAT IS HAPPENING HERE:

    DISCONNECTED --connect()--> CONNECTING --200 text/event-stream--> CONNECTED
    CONNECTING --204 / 205 / 200 with another type--> RETRY_SCHEDULED
    CONNECTED --stream ends or breaks--> RETRY_SCHEDULED
    RETRY_SCHEDULED --timer fires--> CONNECTING
    close() from anywhere --> DISCONNECTED

Each attempt runs as one asyncio task and carries a generation number. close()
and every new attempt bump the generation, so a timer or a network completion
that belongs to an older attempt finds a mismatch and does nothing. That is how
a late response can never resurrect a client that was already closed.

State lives behind one RLock shared with the handler registry. The lock is
never held across an `await`, and no user callback runs while it is held:
state changes are queued under the lock and reported once it is released.
"""
import asyncio
import concurrent.futures
import threading
from collections import deque
from typing import Callable

import httpx
from loguru import logger

from eventsource.client.dispatcher import Dispatcher
from eventsource.client.packet import PacketAccumulator
from eventsource.client.transport import HttpxTransport, Transport
from eventsource.shared.client_utils import log_connection, make_client_stats, utc_now_iso
from eventsource.shared.config import ClientConfig
from eventsource.shared.errors import (
    AlreadyConnectedError,
    EventSourceError,
    ProtocolStatusError,
    RetryableResponseError,
    StreamError,
    StreamInterruptedError,
    TransportError,
)
from eventsource.shared.models import ConnectionState

EVENT_STREAM = "text/event-stream"
RETRY_STATUSES = (204, 205)


def is_event_stream(content_type: str | None) -> bool:
    media_type = (content_type or "").split(";", 1)[0].strip()
    return media_type.lower() == EVENT_STREAM


def is_retryable(status_code: int, content_type: str | None) -> bool:
    if status_code in RETRY_STATUSES:
        return True
    return status_code == 200 and not is_event_stream(content_type)


class ConnectionManager:
    def __init__(
        self,
        config: ClientConfig,
        dispatcher: Dispatcher,
        lock=None,
        transport_factory: Callable[[ClientConfig], Transport] | None = None,
        stats: dict | None = None,
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.retry_state = dispatcher.retry_state
        self.accumulator = PacketAccumulator()
        self.stats = stats if stats is not None else make_client_stats()

        self._lock = lock or threading.RLock()
        self._transport_factory = transport_factory or HttpxTransport

        self._state = ConnectionState.DISCONNECTED
        self._generation = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._path: str | None = None
        self._result: asyncio.Future | None = None
        self._task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._transport: Transport | None = None
        self._retry_timer: asyncio.TimerHandle | None = None
        self._state_changes: deque[ConnectionState] = deque()

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def retry_timer(self) -> asyncio.TimerHandle | None:
        with self._lock:
            return self._retry_timer

    @property
    def transport(self) -> Transport | None:
        with self._lock:
            return self._transport

    # ==========================
    # PUBLIC OPERATIONS
    # ==========================
    def connect(self, path: str, last_event_id: str | None = None) -> asyncio.Future:
        """
        Starts an attempt and returns a future for its outcome.
        The future resolves once the stream is open, or fails with TransportError /
        ProtocolStatusError. Retryable responses keep it pending while the client
        retries on its own.
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
                raise AlreadyConnectedError(self._state.value)

            self._cancel_retry_timer()
            if last_event_id is not None:
                self.retry_state.last_event_id = last_event_id

            if self._result is not None and not self._result.done():
                self._result.cancel()

            self._loop = loop
            self._path = path
            self._result = result = loop.create_future()
            self._start_attempt()

        self._flush_state_changes()
        return result

    def close(self) -> concurrent.futures.Future | None:
        """
        Stops the client. On the loop thread this takes effect before returning.
        From any other thread the close is handed to the loop and the returned
        concurrent future completes once it has run; until then `state` may
        still read CONNECTED.
        """
        loop = self._loop
        if loop is not None and loop.is_running() and not self._in_loop_thread():
            return asyncio.run_coroutine_threadsafe(self.aclose(), loop)

        with self._lock:
            self._generation += 1
            self._cancel_retry_timer()
            task, self._task = self._task, None
            result, self._result = self._result, None
            was_active = self._state != ConnectionState.DISCONNECTED
            self._set_state(ConnectionState.DISCONNECTED)

        # A handler running inside the read task may call close(); the task sees
        # the new generation and tears its transport down by itself.
        if task is not None and not task.done() and task is not self._current_task():
            task.cancel()
        if result is not None and not result.done():
            result.cancel()
        if was_active:
            log_connection("closed", self._path)
        self._flush_state_changes()
        return None

    async def aclose(self) -> None:
        self.close()
        current = self._current_task()
        pending = [t for t in self._tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ==========================
    # ATTEMPT LIFECYCLE
    # ==========================
    def _start_attempt(self) -> None:
        # Caller holds the lock
        self._generation += 1
        self._set_state(ConnectionState.CONNECTING)
        task = self._loop.create_task(
            self._run_attempt(self._generation, self._path, self.retry_state.last_event_id)
        )
        self._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_attempt(self, generation: int, path: str, last_event_id: str | None) -> None:
        headers = {"Accept": EVENT_STREAM, "Cache-Control": "no-cache"}
        if last_event_id is not None:
            # httpx encodes str header values as ASCII; ids are arbitrary UTF-8
            headers["Last-Event-ID"] = last_event_id.encode("utf-8")

        try:
            transport = self._transport_factory(self.config)
        except Exception as e:
            self._fail(generation, self._transport_error(path, e))
            return
        with self._lock:
            self._transport = transport
        log_connection("connecting", path, {"generation": generation, "last_event_id": last_event_id})

        try:
            try:
                response = await transport.open_stream(path, headers)
            except (ConnectionError, OSError, httpx.HTTPError) as e:
                self._fail(generation, self._transport_error(path, e))
                return
            except Exception as e:
                logger.opt(exception=e).error(f"protocol=sse event=open_error path={path} reason='{e}'")
                self._fail(generation, self._transport_error(path, e))
                return

            content_type = response.headers.get("content-type")
            if is_retryable(response.status_code, content_type):
                await self._close_transport(transport)
                with self._lock:
                    if generation == self._generation:
                        self.stats["retryable_responses"] += 1
                self._schedule_retry(generation, RetryableResponseError(path, response.status_code, content_type))
                return

            if response.status_code != 200:
                self._fail(generation, ProtocolStatusError(path, response.status_code))
                return

            if not self._on_connected(generation):
                return

            reason = "end of stream"
            try:
                async for chunk in response.aiter_bytes():
                    if not self._on_chunk(generation, chunk):
                        return
            except (ConnectionError, OSError, httpx.HTTPError) as e:
                reason = str(e) or e.__class__.__name__
            except Exception as e:
                logger.opt(exception=e).error(f"protocol=sse event=read_error path={path} reason='{e}'")
                reason = str(e) or e.__class__.__name__

            await self._close_transport(transport)
            self._schedule_retry(generation, StreamInterruptedError(path, reason))
        finally:
            await self._close_transport(transport)

    def _on_connected(self, generation: int) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            self.accumulator.reset()
            self.stats["connected_at"] = utc_now_iso()
            self._set_state(ConnectionState.CONNECTED)
            result = self._result

        log_connection("connected", self._path, {"generation": generation})
        if result is not None and not result.done():
            result.set_result(None)
        self._flush_state_changes()
        return True

    def _on_chunk(self, generation: int, chunk: bytes) -> bool:
        with self._lock:
            if generation != self._generation or self._state != ConnectionState.CONNECTED:
                return False
            self.stats["bytes_received"] += len(chunk)
            packets = list(self.accumulator.drain()) if self.accumulator.append(chunk) else []

        for packet in packets:
            with self._lock:
                # A handler may have closed or restarted the client mid-chunk
                if generation != self._generation:
                    return False
                self.stats["events_received"] += 1
                self.stats["last_event_at"] = utc_now_iso()
            logger.debug(f"protocol=sse event=packet name={packet.event} id={packet.id} bytes={len(packet.data)}")
            self.dispatcher.dispatch(packet)
        return True

    def _fail(self, generation: int, error: EventSourceError) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._task = None
            result, self._result = self._result, None
            self._set_state(ConnectionState.DISCONNECTED)

        log_connection("failed", self._path, {"reason": f"'{error}'"}, level="ERROR")
        if result is not None and not result.done():
            result.set_exception(error)
        else:
            # The caller already got its success; a later reconnect failing is only observable here
            self._notify_error(error)
        # Last, so a state handler that reconnects gets a fresh future of its own
        self._flush_state_changes()

    # ==========================
    # RETRY TIMER
    # ==========================
    def _schedule_retry(self, generation: int, error: StreamError) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._cancel_retry_timer()
            delay_s = self.retry_state.retry_period_s
            self._retry_timer = self._loop.call_later(delay_s, self._on_retry_timer, generation)
            self._task = None
            self._set_state(ConnectionState.RETRY_SCHEDULED)

        self._flush_state_changes()
        log_connection(
            "retry_scheduled",
            self._path,
            {"delay_ms": self.retry_state.retry_period_ms, "reason": f"'{error}'"},
            level="WARNING",
        )
        self._notify_error(error)

    def _on_retry_timer(self, generation: int) -> None:
        with self._lock:
            # Fired after close() or a manual connect(): nothing to do
            if generation != self._generation or self._state != ConnectionState.RETRY_SCHEDULED:
                return
            self._retry_timer = None
            self.stats["reconnect_count"] += 1
            self._start_attempt()
        self._flush_state_changes()

    def _cancel_retry_timer(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    # ==========================
    # HELPERS
    # ==========================
    async def _close_transport(self, transport: Transport) -> None:
        with self._lock:
            if self._transport is transport:
                self._transport = None
        try:
            await transport.aclose()
        except Exception as e:
            logger.warning(f"protocol=sse event=close_error path={self._path} reason='{e}'")

    def _set_state(self, state: ConnectionState) -> None:
        # Caller holds the lock; the handler hears about it in _flush_state_changes
        if state == self._state:
            return
        self._state = state
        self._state_changes.append(state)

    def _flush_state_changes(self) -> None:
        while True:
            with self._lock:
                if not self._state_changes:
                    return
                state = self._state_changes.popleft()
                handler = self.dispatcher.registry.state_handler
            if handler is not None:
                self.dispatcher.notify(handler, state, "state")

    @staticmethod
    def _transport_error(path: str, e: Exception) -> TransportError:
        error = TransportError(path, str(e) or e.__class__.__name__)
        error.__cause__ = e
        return error

    def _notify_error(self, error: EventSourceError) -> None:
        handler = self.dispatcher.registry.error_handler
        if handler is not None:
            self.dispatcher.notify(handler, error, "error")

    def _in_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    @staticmethod
    def _current_task() -> asyncio.Task | None:
        try:
            return asyncio.current_task()
        except RuntimeError:
            return None
