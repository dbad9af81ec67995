"""
MODULE OVERVIEW:
The HTTP transport the connection manager drives.

WHAT IS HAPPENING HERE:
We use the HTTPX `send(..., stream=True)` call to keep the body open and read it
chunk by chunk. One transport serves exactly one attempt: the connection manager
builds a fresh one per connect/reconnect and closes it when the attempt ends,
which also aborts a request that is still in flight.
"""
from typing import Protocol

import httpx

from eventsource.shared.config import ClientConfig


class Transport(Protocol):
    async def open_stream(self, path: str, headers: dict[str, str | bytes]) -> httpx.Response:
        ...

    async def aclose(self) -> None:
        ...


class HttpxTransport:
    def __init__(self, config: ClientConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=config.headers,
            timeout=httpx.Timeout(config.read_timeout_s, connect=config.connect_timeout_s),
            verify=config.verify,
            follow_redirects=config.follow_redirects,
            transport=transport,
        )
        self.response: httpx.Response | None = None
        self.closed = False

    async def open_stream(self, path: str, headers: dict[str, str | bytes]) -> httpx.Response:
        request = self.client.build_request("GET", path, headers=headers)
        self.response = await self.client.send(request, stream=True)
        return self.response

    async def aclose(self) -> None:
        if self.closed:
            return
        try:
            if self.response is not None:
                await self.response.aclose()
        finally:
            await self.client.aclose()
            self.closed = True
