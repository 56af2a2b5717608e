"""Inbound chat payload validation."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from errors import ValidationError
from models import ROLES, ChatRequest, ChatTurn


def _encoded_size(value: Any) -> int:
    return len(json.dumps(value, ensure_ascii=False).encode("utf-8"))


def _validate_turns(raw: Any) -> tuple[ChatTurn, ...]:
    if not isinstance(raw, list):
        raise ValidationError("Invalid request: 'messages' field must be an array")
    if not raw:
        raise ValidationError("Invalid request: 'messages' array cannot be empty")

    turns: List[ChatTurn] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"Invalid request: messages[{i}] must be an object")
        role = item.get("role")
        if role not in ROLES:
            raise ValidationError(
                f"Invalid request: messages[{i}].role must be one of {', '.join(sorted(ROLES))}"
            )
        content = item.get("content")
        if not isinstance(content, str):
            raise ValidationError(f"Invalid request: messages[{i}].content must be a string")
        turns.append(ChatTurn(role=role, content=content))

    if not any(t.content.strip() for t in turns):
        raise ValidationError("Invalid request: every message is empty")
    return tuple(turns)


def validate_chat_payload(payload: Any, max_bytes: int) -> ChatRequest:
    """
    Normalize and check an inbound chat payload.

    Accepts either `{"message": "..."}` or `{"messages": [{"role", "content"}, ...]}`.
    When both are present, `messages` wins. Raises ValidationError (413 when the
    message or turn list encodes to more than `max_bytes`).
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body: expected object")

    if payload.get("messages") is not None:
        turns = _validate_turns(payload["messages"])
        size = _encoded_size([t.to_dict() for t in turns])
        request = ChatRequest(turns=turns)
    else:
        message = payload.get("message")
        if message is None or (isinstance(message, str) and not message.strip()):
            raise ValidationError("Empty message")
        if not isinstance(message, str):
            raise ValidationError("Invalid request: 'message' must be a string")
        size = _encoded_size(message)
        request = ChatRequest(message=message)

    if size > max_bytes:
        raise ValidationError(
            f"Request too large: {size} bytes (max {max_bytes})", status_code=413
        )
    return request


def validate_candidate_models(value: Any) -> Optional[List[str]]:
    """Check the optional caller-supplied candidate list. None or [] means use the default."""
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError("Invalid request: 'models' must be an array of model ids")
    out: List[str] = []
    for i, m in enumerate(value):
        if not isinstance(m, str) or not m.strip():
            raise ValidationError(f"Invalid request: models[{i}] must be a non-empty string")
        out.append(m.strip())
    return out or None


def wants_stream(
    payload: Dict[str, Any], stream_query: Optional[str], accept_header: Optional[str]
) -> bool:
    """Decide streaming from the body flag, `?stream=` query or the Accept header."""
    flag = payload.get("stream")
    if isinstance(flag, bool):
        return flag
    if (stream_query or "").strip().lower() in {"1", "true", "yes"}:
        return True
    accept = (accept_header or "").lower()
    return "text/event-stream" in accept or "stream" in accept
