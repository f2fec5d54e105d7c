"""Server-sent event framing for the assistant turn stream."""

import codecs
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from pydantic import ValidationError

from schemas.events import (
    Delta,
    FunctionCall,
    FunctionCallRequested,
    RunCompleted,
    RunFailed,
    StreamEnded,
    StreamEvent,
    ThreadCreated,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

# Normalized wire name -> event kind
EVENT_ALIASES = {
    "thread_created": "thread_created",
    "delta": "delta",
    "content": "delta",
    "message_delta": "delta",
    "function_call": "function_call",
    "function_call_requested": "function_call",
    "requires_action": "function_call",
    "completed": "completed",
    "done": "completed",
    "run_completed": "completed",
    "error": "failed",
    "failed": "failed",
    "run_failed": "failed",
    "end": "stream_ended",
    "stream_ended": "stream_ended",
}


class MalformedFrameError(ValueError):
    """A frame could not be interpreted as a stream event."""
    pass


def normalize_event_name(name: str) -> str:
    return name.strip().lower().replace("-", "_").replace(".", "_").replace(" ", "_")


def _build_event(kind: str, payload: Dict[str, Any]) -> StreamEvent:
    if kind == "thread_created":
        thread_id = payload.get("threadId") or payload.get("thread_id") or payload.get("id")
        if not thread_id:
            raise ValueError("thread_created frame without a thread id")
        return ThreadCreated(thread_id=thread_id)

    if kind == "delta":
        text = payload.get("content", payload.get("text"))
        if not isinstance(text, str):
            raise ValueError("delta frame without text content")
        return Delta(text=text)

    if kind == "function_call":
        raw_calls = payload.get("toolCalls") or payload.get("tool_calls") or payload.get("calls")
        run_id = payload.get("runId") or payload.get("run_id")
        if not isinstance(raw_calls, list) or not raw_calls or not run_id:
            raise ValueError("function_call frame needs toolCalls and runId")
        return FunctionCallRequested(
            calls=[FunctionCall.from_wire(call) for call in raw_calls],
            run_id=run_id,
            thread_id=payload.get("threadId") or payload.get("thread_id")
        )

    if kind == "completed":
        full = payload.get("fullContent", payload.get("content"))
        if full is not None and not isinstance(full, str):
            raise ValueError("completed frame content is not text")
        return RunCompleted(full_content=full or None)

    if kind == "failed":
        reason = payload.get("error") or payload.get("reason") or "Run failed"
        if isinstance(reason, dict):
            reason = reason.get("message") or "Run failed"
        return RunFailed(reason=str(reason))

    return StreamEnded()


def parse_frame(frame: str) -> Optional[StreamEvent]:
    """
    Interpret one frame (the text between blank lines).

    Accepts ``event:``/``data:`` lines and the compact ``<event>: <json>``
    form. Comment lines (``:``) are skipped.

    Returns:
        The decoded event, or None for frames that carry nothing to act on

    Raises:
        MalformedFrameError: If the frame cannot be interpreted
    """
    event_name: Optional[str] = None
    data_lines: List[str] = []

    for raw_line in frame.split("\n"):
        line = raw_line.rstrip("\r")
        if not line or line.startswith(":"):
            continue
        field, sep, value = line.partition(":")
        if not sep:
            raise MalformedFrameError(f"Line without field separator: {line[:80]!r}")
        if value.startswith(" "):
            value = value[1:]
        field = field.strip()
        if field == "data":
            data_lines.append(value)
        elif field == "event":
            event_name = value.strip()
        elif field in ("id", "retry"):
            continue
        elif normalize_event_name(field) in EVENT_ALIASES:
            event_name = field
            data_lines.append(value)
        else:
            raise MalformedFrameError(f"Unknown frame field {field!r}")

    if not data_lines and event_name is None:
        return None

    data = "\n".join(data_lines).strip()
    if data == DONE_SENTINEL:
        return StreamEnded()

    payload: Any = {}
    if data:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(f"Invalid JSON payload: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedFrameError("Frame payload is not a JSON object")

    name = event_name or payload.get("type")
    if not name:
        raise MalformedFrameError("Frame has no event name")

    kind = EVENT_ALIASES.get(normalize_event_name(str(name)))
    if kind is None:
        logger.debug(f"Ignoring unrecognized event {name!r}")
        return None

    try:
        return _build_event(kind, payload)
    except (ValueError, TypeError, ValidationError) as e:
        raise MalformedFrameError(f"Bad {kind} frame: {e}") from e


def encode_frame(event_type: str, payload: Optional[Dict[str, Any]] = None) -> str:
    """Serialize one event as an SSE ``data:`` frame."""
    body = {"type": event_type}
    body.update(payload or {})
    return f"data: {json.dumps(body)}\n\n"


def encode_done() -> str:
    return f"data: {DONE_SENTINEL}\n\n"


class FrameDecoder:
    """
    Reassembles frames from arbitrarily split chunks.

    Chunk boundaries carry no meaning: a frame or a multi-byte character may
    span several chunks. Malformed frames are logged, counted and skipped.
    """

    def __init__(self):
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.frames_seen = 0
        self.malformed_frames = 0

    def feed(self, chunk: Union[str, bytes]) -> List[StreamEvent]:
        """Add a chunk and return every event completed by it."""
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")

        events = []
        while True:
            idx = self._buffer.find("\n\n")
            if idx < 0:
                break
            frame = self._buffer[:idx]
            self._buffer = self._buffer[idx + 2:]
            event = self._decode(frame)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[StreamEvent]:
        """Decode whatever is left once the transport is exhausted."""
        self._buffer += self._utf8.decode(b"", final=True)
        frame = self._buffer.strip("\n")
        self._buffer = ""
        event = self._decode(frame)
        return [event] if event is not None else []

    def _decode(self, frame: str) -> Optional[StreamEvent]:
        if not frame.strip():
            return None
        self.frames_seen += 1
        try:
            return parse_frame(frame)
        except MalformedFrameError as e:
            self.malformed_frames += 1
            logger.warning(f"Skipping malformed stream frame: {e}")
            return None


async def iter_events(
    chunks: AsyncIterator[Union[str, bytes]],
    decoder: Optional[FrameDecoder] = None
) -> AsyncIterator[StreamEvent]:
    """
    Decode a chunk stream into events.

    Iteration stops after the end-of-stream sentinel, and the underlying
    chunk stream is always closed.
    """
    decoder = decoder or FrameDecoder()
    try:
        async for chunk in chunks:
            for event in decoder.feed(chunk):
                yield event
                if isinstance(event, StreamEnded):
                    return
        for event in decoder.flush():
            yield event
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
