"""
MODULE OVERVIEW:
The incremental SSE packet parser.

WHAT IS HAPPENING HERE:
The transport hands us bytes in whatever chunks the network produced. A chunk
can end in the middle of a field name, in the middle of a `\\r\\n` pair, or
between the two newlines that close a packet. So we keep the unfinished tail
of the last line as a list of pieces in `_partial`, and only ever look at
complete lines:

    event: ping        -> field "event", value "ping"
    data: hello        -> field "data",  value "hello"
    : keep-alive       -> comment, dropped
    <blank line>       -> the packet is done

No I/O happens here; this is pure state, which is what makes it easy to test
against every possible chunk split.
"""
from collections import deque
from typing import Iterator

from eventsource.shared.models import EventPacket

UTF8_BOM = b"\xef\xbb\xbf"


class PacketAccumulator:
    def __init__(self):
        self._ready: deque[EventPacket] = deque()
        self.reset()

    def reset(self) -> None:
        """Forget partial lines, pending packets and the BOM check. Called per attempt."""
        self._partial: list[bytes] = []
        self._head = b""
        self._bom_checked = False
        self._ready.clear()
        self._start_packet()

    def _start_packet(self) -> None:
        self._event: str | None = None
        self._data_lines: list[str] = []
        self._id: str | None = None
        self._retry: int | None = None
        self._has_content = False

    def append(self, chunk: bytes) -> bool:
        """Feed one chunk. Returns True when at least one packet is ready to drain."""
        if not self._bom_checked:
            chunk = self._head + chunk
            # Wait until we can tell a BOM apart from a short first chunk
            if len(chunk) < len(UTF8_BOM) and UTF8_BOM.startswith(chunk):
                self._head = chunk
                return bool(self._ready)
            self._head = b""
            if chunk.startswith(UTF8_BOM):
                chunk = chunk[len(UTF8_BOM):]
            self._bom_checked = True

        # Only the new bytes are scanned; earlier pieces of an unfinished line are joined once
        *lines, tail = chunk.split(b"\n")
        if lines and self._partial:
            self._partial.append(lines[0])
            lines[0] = b"".join(self._partial)
            self._partial = []
        if tail:
            self._partial.append(tail)

        for raw in lines:
            if raw.endswith(b"\r"):
                raw = raw[:-1]
            self._process_line(raw.decode("utf-8", errors="replace"))

        return bool(self._ready)

    def drain(self) -> Iterator[EventPacket]:
        while self._ready:
            yield self._ready.popleft()

    def feed(self, chunk: bytes) -> list[EventPacket]:
        self.append(chunk)
        return list(self.drain())

    def _process_line(self, line: str) -> None:
        if not line:
            if self._has_content:
                self._ready.append(EventPacket(
                    event=self._event,
                    data="\n".join(self._data_lines),
                    id=self._id,
                    retry=self._retry,
                ))
            self._start_packet()
            return

        if line.startswith(":"):
            return

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        # Unknown fields are dropped but still make this a real packet
        self._has_content = True

        field = name.lower()
        if field == "data":
            self._data_lines.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            self._id = value
        elif field == "retry":
            if value.isascii() and value.isdigit():
                self._retry = int(value)
