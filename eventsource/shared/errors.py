"""
MODULE OVERVIEW:
The error taxonomy of the client.

WHAT IS HAPPENING HERE:
Two families. Terminal errors (`TransportError`, `ProtocolStatusError`) end an
attempt and are reported once through the future returned by `connect()`.
`StreamError`s never fail the caller: the client retries on its own and only
hands these values to the optional error observer so it can see *why* a
reconnect is happening.
"""


class EventSourceError(Exception):
    """Base class for everything this package raises."""


class AlreadyConnectedError(EventSourceError):
    def __init__(self, state: str):
        super().__init__(f"EventSource already connected (state={state})")
        self.state = state


class TransportError(EventSourceError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not open EventSource stream {path}: {reason}")
        self.path = path
        self.reason = reason


class ProtocolStatusError(EventSourceError):
    def __init__(self, path: str, status_code: int):
        super().__init__(
            f"Could not connect EventSource {path}, the server answered with status {status_code}"
        )
        self.path = path
        self.status_code = status_code


class StreamError(EventSourceError):
    """A condition the client recovers from by reconnecting."""


class RetryableResponseError(StreamError):
    def __init__(self, path: str, status_code: int, content_type: str | None):
        super().__init__(
            f"Server asked to retry {path} (status={status_code} content_type={content_type})"
        )
        self.path = path
        self.status_code = status_code
        self.content_type = content_type


class StreamInterruptedError(StreamError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"EventSource stream {path} interrupted: {reason}")
        self.path = path
        self.reason = reason
