"""Server-Sent Events (SSE) decoding and reply text extraction."""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, List, Optional, Tuple

from errors import StreamParseError

log = logging.getLogger("chat_relay")

TERMINAL_SENTINEL = "[DONE]"


# ---------------------------------------------------------------------------
# Reply shapes
# ---------------------------------------------------------------------------

TextExtractor = Callable[[Dict[str, Any]], Optional[str]]


def _first_item(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


def _join_fragments(content: Any) -> Optional[str]:
    """Content may be a plain string or a list of `{"text": ...}` fragments."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for frag in content:
            if isinstance(frag, str):
                parts.append(frag)
            elif isinstance(frag, dict) and isinstance(frag.get("text"), str):
                parts.append(frag["text"])
        return "".join(parts)
    return None


def _text_from_output_text(obj: Dict[str, Any]) -> Optional[str]:
    value = obj.get("output_text")
    return value if isinstance(value, str) else None


def _text_from_delta(obj: Dict[str, Any]) -> Optional[str]:
    delta = obj.get("delta")
    if isinstance(delta, dict):
        content = delta.get("content")
        return content if isinstance(content, str) else None
    if isinstance(delta, str):
        # Responses API: {"type": "response.output_text.delta", "delta": "..."}.
        # Other typed events (e.g. function-call argument deltas) are not reply text.
        event_type = obj.get("type")
        if event_type is None or str(event_type).endswith("text.delta"):
            return delta
    return None


def _text_from_output(obj: Dict[str, Any]) -> Optional[str]:
    item = _first_item(obj.get("output"))
    if not isinstance(item, dict):
        return None
    return _join_fragments(item.get("content"))


def _text_from_choice_delta(obj: Dict[str, Any]) -> Optional[str]:
    choice = _first_item(obj.get("choices"))
    if not isinstance(choice, dict) or not isinstance(choice.get("delta"), dict):
        return None
    content = choice["delta"].get("content")
    return content if isinstance(content, str) else None


def _text_from_choice_message(obj: Dict[str, Any]) -> Optional[str]:
    choice = _first_item(obj.get("choices"))
    if not isinstance(choice, dict) or not isinstance(choice.get("message"), dict):
        return None
    return _join_fragments(choice["message"].get("content"))


def _text_from_choice_text(obj: Dict[str, Any]) -> Optional[str]:
    choice = _first_item(obj.get("choices"))
    if not isinstance(choice, dict):
        return None
    text = choice.get("text")
    return text if isinstance(text, str) else None


# Tried in order; the first shape yielding non-empty text wins.
TEXT_EXTRACTORS: Tuple[Tuple[str, TextExtractor], ...] = (
    ("output_text", _text_from_output_text),
    ("delta", _text_from_delta),
    ("output_content", _text_from_output),
    ("choices_delta", _text_from_choice_delta),
    ("choices_message", _text_from_choice_message),
    ("choices_text", _text_from_choice_text),
)


def extract_text(obj: Any) -> Optional[str]:
    """Extract reply text from a decoded payload, or None if no known shape matches."""
    if not isinstance(obj, dict):
        return None
    for _name, extractor in TEXT_EXTRACTORS:
        text = extractor(obj)
        if text:
            return text
    return None


def matching_shape(obj: Any) -> Optional[str]:
    """Name of the first shape that yields text (diagnostics only)."""
    if not isinstance(obj, dict):
        return None
    for name, extractor in TEXT_EXTRACTORS:
        if extractor(obj):
            return name
    return None


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

def is_sse_framing_line(line: str) -> bool:
    """
    SSE fields that carry no reply text: event, id, retry and ":" comments.
    """
    return (
        line.startswith("event:")
        or line.startswith("id:")
        or line.startswith("retry:")
        or line.startswith(":")
    )


def is_done_data_line(line: str) -> bool:
    """
    Accept: "data:[DONE]" / "data: [DONE]" / "data:    [DONE]" (tolerate whitespace)
    """
    if not line.startswith("data:"):
        return False
    return line[len("data:"):].strip() == TERMINAL_SENTINEL


def parse_record(payload: str) -> Any:
    """Parse one `data:` payload, raising StreamParseError on malformed JSON."""
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise StreamParseError(payload, f"invalid JSON ({e.msg})") from e


@dataclass(frozen=True)
class StreamEvent:
    """
    One decoded stream record.

    Exactly one of: a parsed JSON `payload`, a raw `text` record forwarded
    as-is, or the terminal sentinel (`done`).
    """

    payload: Any = None
    text: Optional[str] = None
    done: bool = False

    @property
    def delta(self) -> Optional[str]:
        if self.text is not None:
            return self.text or None
        if self.payload is not None:
            return extract_text(self.payload)
        return None


class StreamFrameDecoder:
    """
    Incremental decoder for a line-framed event stream.

    Bytes arrive in arbitrary chunks; complete lines are decoded and the
    trailing partial line is carried into the next feed(). After the terminal
    sentinel the decoder ignores any further input.

    `sse` says whether the upstream is an event stream. True drops `event:`,
    `id:`, `retry:` and `:` lines from the start. False forwards them as text.
    None (unknown) forwards them until the first `data:` line shows the stream
    is SSE-framed.
    """

    def __init__(self, sse: Optional[bool] = None) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._carry = ""
        self._done = False
        self._sse = sse

    @property
    def sse(self) -> Optional[bool]:
        return self._sse

    @property
    def done(self) -> bool:
        return self._done

    def feed(self, chunk: bytes) -> List[StreamEvent]:
        """Decode every complete line in carry + chunk."""
        if self._done:
            return []
        self._carry += self._utf8.decode(chunk)
        *lines, self._carry = self._carry.split("\n")
        return self._decode_lines(lines)

    def finish(self) -> List[StreamEvent]:
        """Flush the carried partial line at end of stream."""
        if self._done:
            return []
        tail = self._carry + self._utf8.decode(b"", final=True)
        self._carry = ""
        return self._decode_lines([tail])

    def _decode_lines(self, lines: List[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for raw in lines:
            event = self._decode_line(raw)
            if event is None:
                continue
            events.append(event)
            if event.done:
                self._done = True
                self._carry = ""
                break
        return events

    def _decode_line(self, raw: str) -> Optional[StreamEvent]:
        line = raw.strip()
        if not line:
            return None

        if line.startswith("data:"):
            if self._sse is None:
                self._sse = True
            if is_done_data_line(line):
                return StreamEvent(done=True)
            payload = line[len("data:"):].strip()
            if not payload:
                return None
            try:
                return StreamEvent(payload=parse_record(payload))
            except StreamParseError as e:
                log.debug("Forwarding unparseable stream record as text: %s", e)
                return StreamEvent(text=payload)

        if self._sse and is_sse_framing_line(line):
            return None

        # Not SSE-framed: forward as raw text
        return StreamEvent(text=line)


async def iter_token_deltas(
    chunks: AsyncIterable[bytes],
    decoder: StreamFrameDecoder | None = None,
) -> AsyncIterator[str]:
    """
    Pull byte chunks and yield token deltas in order.

    Stops at the terminal sentinel, or at end of input after flushing the
    carried partial line.
    """
    decoder = decoder or StreamFrameDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            if event.done:
                return
            delta = event.delta
            if delta:
                yield delta
    for event in decoder.finish():
        if event.done:
            return
        delta = event.delta
        if delta:
            yield delta
