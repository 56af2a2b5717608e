"""Data model for the chat relay."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

ROLES = frozenset({"system", "user", "assistant"})


@dataclass(frozen=True)
class ChatTurn:
    """One conversational turn."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    """
    Validated chat request.

    Exactly one of `message` (single prompt) or `turns` (ordered conversation)
    is set. Build instances through validator.validate_chat_payload().
    """

    message: Optional[str] = None
    turns: Tuple[ChatTurn, ...] = ()

    @property
    def is_conversation(self) -> bool:
        return self.message is None

    def as_turns(self) -> List[Dict[str, str]]:
        """Return the request as a role/content turn list."""
        if self.message is not None:
            return [{"role": "user", "content": self.message}]
        return [t.to_dict() for t in self.turns]


@dataclass(frozen=True)
class ChatReply:
    """Aggregated batch reply."""

    text: str
    model: str


@dataclass
class FallbackResult:
    """Outcome of a successful fallback run: the chosen model and its live response."""

    model: str
    response: httpx.Response
    attempts: List[str] = field(default_factory=list)


def resolve_candidates(
    requested: Optional[Sequence[str]], default_models: Sequence[str]
) -> Tuple[str, ...]:
    """
    Resolve the ordered candidate list for one request.

    A non-empty caller list overrides the default ordering. Duplicates are
    dropped, keeping the first occurrence.
    """
    source: Sequence[str] = requested if requested else default_models
    candidates = tuple(dict.fromkeys(m.strip() for m in source if m and m.strip()))
    if not candidates:
        raise ValueError("candidate model list is empty")
    return candidates


def parse_json_object(raw: bytes) -> Optional[Dict[str, Any]]:
    """Best-effort JSON object parse for upstream bodies."""
    try:
        obj = json.loads(raw.decode("utf-8", errors="replace"))
    except (json.JSONDecodeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None
