"""Scripted transports for tests.

`StreamServer` is an `httpx.MockTransport` handler that answers each request with
the next canned response and records what the client sent.
"""

import asyncio

import httpx

from eventsource.client.transport import HttpxTransport
from eventsource.shared.config import ClientConfig


def sse_response(
    *chunks: bytes,
    hold_open: asyncio.Event | None = None,
    status: int = 200,
    content_type: str = "text/event-stream",
) -> httpx.Response:
    """A streaming response that yields `chunks` and then ends, or waits on `hold_open`."""

    async def body():
        for chunk in chunks:
            yield chunk
        if hold_open is not None:
            await hold_open.wait()

    return httpx.Response(status, headers={"content-type": content_type}, content=body())


class StreamServer:
    """Answers requests in order; once the script is exhausted every request gets a 204."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []
        self.transports: list[HttpxTransport] = []

    def handler(self, request: httpx.Request):
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(204)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        # Plain or async callables build the response lazily from the request
        return response(request) if callable(response) else response

    def factory(self, config: ClientConfig) -> HttpxTransport:
        transport = HttpxTransport(config, transport=httpx.MockTransport(self.handler))
        self.transports.append(transport)
        return transport
