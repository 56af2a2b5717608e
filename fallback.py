"""Ordered model fallback over upstream candidates."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

import httpx

from config import DEFAULT_MODEL_ERROR_PATTERN, AppConfig
from errors import (
    UpstreamAllCandidatesFailed,
    UpstreamAuthError,
    UpstreamError,
    UpstreamMalformedRequest,
    UpstreamModelUnavailable,
)
from models import ChatRequest, FallbackResult, parse_json_object
from upstream import UpstreamClient

log = logging.getLogger("chat_relay")

TRANSIENT_STATUSES = frozenset({408, 409, 425, 429})


class FailureKind(enum.Enum):
    MODEL_UNAVAILABLE = "model-unavailable"
    TRANSIENT = "transient"
    AUTH = "auth"
    MALFORMED = "malformed"

    @property
    def retryable(self) -> bool:
        return self in (FailureKind.MODEL_UNAVAILABLE, FailureKind.TRANSIENT)


class FallbackState(enum.Enum):
    PENDING = "pending"
    TRYING = "trying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(frozen=True)
class FallbackPolicy:
    """How upstream failures are classified."""

    not_found_retryable: bool = True
    model_error_pattern: str = DEFAULT_MODEL_ERROR_PATTERN

    @classmethod
    def from_config(cls, config: AppConfig) -> FallbackPolicy:
        return cls(
            not_found_retryable=config.not_found_retryable,
            model_error_pattern=config.model_error_pattern,
        )

    def is_model_error(self, message: str) -> bool:
        return bool(message) and re.search(self.model_error_pattern, message, re.IGNORECASE) is not None


def upstream_error_fields(body: Any) -> Tuple[str, str]:
    """Return (code, message) from an upstream error body, empty strings if absent."""
    if not isinstance(body, dict):
        return "", ""
    err = body.get("error")
    if isinstance(err, str):
        return "", err
    if isinstance(err, dict):
        code = err.get("code") or err.get("type") or ""
        message = err.get("message") or ""
        return str(code), str(message)
    message = body.get("message")
    return "", str(message) if isinstance(message, str) else ""


def classify_failure(status: Optional[int], body: Any, policy: FallbackPolicy) -> FailureKind:
    """
    Decide whether a failed attempt should fall back to the next candidate.

    `status` is None for transport errors (no HTTP response).
    """
    if status in (401, 403):
        return FailureKind.AUTH

    code, message = upstream_error_fields(body)
    if code == "model_not_found" or policy.is_model_error(message):
        return FailureKind.MODEL_UNAVAILABLE

    if status == 404:
        return FailureKind.MODEL_UNAVAILABLE if policy.not_found_retryable else FailureKind.MALFORMED

    if status is None or status in TRANSIENT_STATUSES or status >= 500:
        return FailureKind.TRANSIENT

    return FailureKind.MALFORMED


_ERRORS_BY_KIND = {
    FailureKind.MODEL_UNAVAILABLE: UpstreamModelUnavailable,
    FailureKind.TRANSIENT: UpstreamModelUnavailable,
    FailureKind.AUTH: UpstreamAuthError,
    FailureKind.MALFORMED: UpstreamMalformedRequest,
}


@dataclass
class FallbackRun:
    """Per-request fallback state. Never shared between requests."""

    candidates: Tuple[str, ...]
    req_id: str
    state: FallbackState = FallbackState.PENDING
    index: int = -1
    attempts: List[str] = field(default_factory=list)
    last_error: Optional[UpstreamError] = None

    def transition(self, state: FallbackState) -> None:
        log.debug(
            "Fallback req_id=%s %s -> %s index=%d",
            self.req_id,
            self.state.value,
            state.value,
            self.index,
        )
        self.state = state


class ModelFallbackOrchestrator:
    """
    Drive an ordered candidate list through the upstream client.

    States: Pending -> Trying(i) -> {Succeeded, Trying(i+1), Exhausted}, with
    Failed for fatal errors. Attempts are strictly sequential.
    """

    def __init__(self, upstream: UpstreamClient, policy: FallbackPolicy) -> None:
        self._upstream = upstream
        self._policy = policy

    async def run(
        self,
        client: httpx.AsyncClient,
        chat: ChatRequest,
        candidates: Sequence[str],
        *,
        stream: bool,
        req_id: str = "-",
    ) -> FallbackResult:
        """Return the first candidate's successful response or raise."""
        run = FallbackRun(candidates=tuple(candidates), req_id=req_id)
        if not run.candidates:
            raise ValueError("candidate model list is empty")

        total = len(run.candidates)
        for i, model in enumerate(run.candidates):
            run.index = i
            run.transition(FallbackState.TRYING)
            run.attempts.append(model)
            log.info("Attempt %d/%d -> %s req_id=%s stream=%s", i + 1, total, model, req_id, stream)

            try:
                resp = await self._upstream.send(client, chat, model, stream)
            except httpx.HTTPError as e:
                kind = classify_failure(None, None, self._policy)
                error: UpstreamError = _ERRORS_BY_KIND[kind](
                    f"Upstream request for model {model} failed: {type(e).__name__}: {e}",
                    model=model,
                )
            else:
                if resp.is_success:
                    run.transition(FallbackState.SUCCEEDED)
                    log.info("Selected model=%s req_id=%s attempts=%d", model, req_id, len(run.attempts))
                    return FallbackResult(model=model, response=resp, attempts=list(run.attempts))
                kind, error = await self._failure_from_response(resp, model)

            if not kind.retryable:
                run.transition(FallbackState.FAILED)
                log.error(
                    "Attempt %d/%d fatal (%s) req_id=%s model=%s: %s",
                    i + 1,
                    total,
                    kind.value,
                    req_id,
                    model,
                    error,
                )
                raise error

            run.last_error = error
            log.warning(
                "Attempt %d/%d %s req_id=%s model=%s: %s; trying next",
                i + 1,
                total,
                kind.value,
                req_id,
                model,
                error,
            )

        run.transition(FallbackState.EXHAUSTED)
        raise UpstreamAllCandidatesFailed(run.candidates, run.last_error)

    async def _failure_from_response(
        self, resp: httpx.Response, model: str
    ) -> Tuple[FailureKind, UpstreamError]:
        snippet = await UpstreamClient.read_error_snippet(resp)
        await resp.aclose()

        body = parse_json_object(snippet.encode("utf-8"))
        kind = classify_failure(resp.status_code, body, self._policy)
        _code, message = upstream_error_fields(body)
        detail = message or snippet[:300] or "no body"
        error = _ERRORS_BY_KIND[kind](
            f"Upstream responded {resp.status_code} for model {model}: {detail}",
            model=model,
            upstream_status=resp.status_code,
        )
        return kind, error
