"""Incremental decoder for the text/event-stream format."""

from dataclasses import dataclass


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched server-sent event."""
    data: str
    event: str = "message"
    id: str | None = None
    retry: int | None = None


class SSEDecoder:
    """
    Feed raw bytes, get complete events.

    Handles LF, CR and CRLF line endings, comments, multi-line data and
    field values split across chunk boundaries.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._data: list[str] = []
        self._event = ""
        self._id: str | None = None
        self._retry: int | None = None
        # Last id seen on the stream; persists across events per the format
        self.last_event_id: str | None = None

    def feed(self, chunk: bytes) -> list[SSEEvent]:
        self._buffer += chunk
        events: list[SSEEvent] = []
        while True:
            line, found = self._next_line()
            if not found:
                break
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def _next_line(self) -> tuple[str, bool]:
        buf = self._buffer
        cr = buf.find(b"\r")
        lf = buf.find(b"\n")
        if cr == -1 and lf == -1:
            return "", False
        if cr != -1 and (lf == -1 or cr < lf):
            # A trailing CR may be the first half of CRLF
            if cr == len(buf) - 1:
                return "", False
            end = cr
            skip = 2 if buf[cr + 1 : cr + 2] == b"\n" else 1
        else:
            end = lf
            skip = 1
        line = buf[:end].decode("utf-8", errors="replace")
        self._buffer = buf[end + skip :]
        return line, True

    def _process_line(self, line: str) -> SSEEvent | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            if "\0" not in value:
                self._id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> SSEEvent | None:
        if self._id is not None:
            self.last_event_id = self._id
        if not self._data:
            # An id-only event still moves the resume position
            event_id, self._id = self._id, None
            self._event = ""
            if event_id is None:
                return None
            return SSEEvent(data="", id=event_id, retry=self._retry)
        event = SSEEvent(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self._id,
            retry=self._retry,
        )
        self._data = []
        self._event = ""
        self._id = None
        self._retry = None
        return event
