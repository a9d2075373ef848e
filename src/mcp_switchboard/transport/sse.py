"""
Server-Sent Events framing.

``SseEventParser`` turns an arbitrarily chunked ``text/event-stream`` body into
events; ``format_sse_event`` produces the wire form. Used by the remote MCP
transport, the Anthropic streaming client and the SSE server.
"""
import codecs
from dataclasses import dataclass


@dataclass
class SseEvent:
    data: str
    event: str = "message"
    id: str | None = None
    retry: int | None = None


class SseEventParser:
    """Incremental parser; feed it chunks as they arrive, get back completed events."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._data_lines: list[str] = []
        self._event_type = ""
        self._last_event_id: str | None = None
        self._retry: int | None = None

    def feed(self, chunk: str | bytes) -> list[SseEvent]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        text = self._buffer + chunk

        # A trailing CR may be the first half of a CRLF split across chunks.
        held = ""
        if text.endswith("\r"):
            text, held = text[:-1], "\r"
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        *lines, rest = text.split("\n")
        self._buffer = rest + held

        events: list[SseEvent] = []
        for line in lines:
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> SseEvent | None:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None # comment / keep-alive

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data_lines.append(value)
        elif field == "event":
            self._event_type = value
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> SseEvent | None:
        event_type, self._event_type = self._event_type, ""
        if not self._data_lines:
            return None
        data = "\n".join(self._data_lines)
        self._data_lines = []
        return SseEvent(
            data=data,
            event=event_type or "message",
            id=self._last_event_id,
            retry=self._retry,
        )


def format_sse_event(data: str, event: str | None = None, event_id: str | None = None) -> str:
    """Formats one event; multi-line data becomes several ``data:`` lines."""
    parts: list[str] = []
    if event:
        parts.append(f"event: {event}")
    if event_id is not None:
        parts.append(f"id: {event_id}")
    for line in data.split("\n"):
        parts.append(f"data: {line}")
    return "\n".join(parts) + "\n\n"
