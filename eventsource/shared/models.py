"""
MODULE OVERVIEW:
The typed data structures shared by the parser, the dispatcher and the
connection state machine, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
`EventPacket` is one fully parsed SSE message. It is frozen: once the blank
line that ends a packet has been seen, nothing downstream gets to edit it.
`RetryState` is the small piece of mutable state that survives reconnects.
"""
from enum import Enum

from pydantic import BaseModel


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"


# WHAT IS HAPPENING HERE:
# `event`, `id` and `retry` are optional on the wire. We keep them as real
# `None`s instead of empty strings, so "no id" and "id: " (an empty id) stay
# distinguishable.
class EventPacket(BaseModel):
    event: str | None = None
    data: str = ""
    id: str | None = None
    retry: int | None = None

    model_config = {"frozen": True}


class RetryState(BaseModel):
    retry_period_ms: int
    last_event_id: str | None = None

    @property
    def retry_period_s(self) -> float:
        return self.retry_period_ms / 1000.0
