"""Shared fixtures for the eventsource tests.

The network is never touched: every client gets its transports from a
`StreamServer` (see tests/helpers.py).
"""

import asyncio
from collections.abc import Callable

import pytest

from eventsource.client.event_source import EventSourceClient
from eventsource.shared.config import ClientConfig
from tests.helpers import StreamServer, sse_response


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds (or fail after a timeout)."""
    return _wait_until


@pytest.fixture
def make_response():
    return sse_response


@pytest.fixture
def make_client():
    """Build an EventSourceClient wired to a StreamServer. Returns (client, server)."""

    def _make(*responses, retry_period_ms: int = 10, **config):
        server = StreamServer(*responses)
        client = EventSourceClient(
            ClientConfig(base_url="http://sse.test", retry_period_ms=retry_period_ms, **config),
            transport_factory=server.factory,
        )
        return client, server

    return _make
