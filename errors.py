"""Error taxonomy for the chat relay.

Every error that can reach the HTTP layer derives from RelayError and carries
the status code it maps to. Errors that never reach the caller (retryable
candidate failures, per-record parse failures, client disconnects) still live
here so the relay can raise and catch them by type.
"""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base class for relay errors surfaced to the caller as `{"error": ...}`."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(RelayError):
    """Malformed, empty or oversized chat request. No upstream call is made."""

    status_code = 400


class AuthConfigError(RelayError):
    """Upstream credential missing from configuration."""

    status_code = 500


class UpstreamError(RelayError):
    """Failure reported by the upstream for one candidate model."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        model: str = "",
        upstream_status: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, status_code)
        self.model = model
        self.upstream_status = upstream_status


class UpstreamModelUnavailable(UpstreamError):
    """Candidate rejected as unknown or unavailable; the next candidate is tried."""


class UpstreamAuthError(UpstreamError):
    """Upstream refused the credential. Fatal for every remaining candidate."""


class UpstreamMalformedRequest(UpstreamError):
    """Upstream rejected the request body. Fatal for every remaining candidate."""


class UpstreamAllCandidatesFailed(RelayError):
    """Every candidate failed with a retryable error."""

    status_code = 502

    def __init__(self, models: tuple[str, ...], last_error: Optional[Exception]) -> None:
        detail = str(last_error) if last_error is not None else "no candidates attempted"
        super().__init__(f"All models failed ({', '.join(models)}): {detail}")
        self.models = models
        self.last_error = last_error


class UpstreamEmptyReply(RelayError):
    """Upstream answered successfully but no text could be extracted."""

    status_code = 502


class RateLimitExceeded(RelayError):
    status_code = 429

    def __init__(self, retry_after_s: float) -> None:
        super().__init__("Too many requests, please try again later.")
        self.retry_after_s = retry_after_s


class StreamParseError(Exception):
    """A single stream record could not be parsed."""

    def __init__(self, payload: str, reason: str) -> None:
        super().__init__(f"{reason}: {payload[:200]!r}")
        self.payload = payload


class ClientDisconnected(Exception):
    """The downstream client went away mid-stream."""
