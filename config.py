"""Configuration management for the chat relay service."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar

REQUEST_SHAPES = ("prompt", "messages")

DEFAULT_MODELS = ("gpt-4o-mini", "gpt-4.1-mini", "gpt-3.5-turbo")

# Matches "model not found" style upstream error messages.
DEFAULT_MODEL_ERROR_PATTERN = (
    r"model\b.*\b(not found|does not exist|not supported|unsupported|unknown|not available)"
    r"|\b(unknown|unsupported|invalid) model\b"
    r"|model_not_found"
)

# A JSON string escape (\u00XX) takes at most 6 bytes per UTF-8 byte of content.
JSON_ESCAPE_FACTOR = 6
BODY_ENVELOPE_BYTES = 4096

_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})

T = TypeVar("T", int, float)


def default_body_limit(max_request_bytes: int) -> int:
    """Raw body ceiling that still admits a fully escaped message of `max_request_bytes`."""
    return max_request_bytes * JSON_ESCAPE_FACTOR + BODY_ENVELOPE_BYTES


def _env_raw(name: str) -> Optional[str]:
    """Stripped value of `name`, or None when unset or blank."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _env_flag(name: str, default: bool) -> bool:
    raw = _env_raw(name)
    return default if raw is None else raw.lower() in _TRUTHY


def _env_number(name: str, default: T, cast: Callable[[str], T]) -> T:
    """Numeric variable; unparsable values fall back to `default`."""
    raw = _env_raw(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def _env_text(name: str, default: str) -> str:
    raw = _env_raw(name)
    return default if raw is None else raw


def _env_models(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Comma-separated model ids, first occurrence wins."""
    raw = _env_raw(name) or ""
    models = tuple(dict.fromkeys(m.strip() for m in raw.split(",") if m.strip()))
    return models or default


@dataclass(frozen=True)
class AppConfig:
    """Relay settings, read once at startup and passed down explicitly."""

    # upstream
    upstream_base_url: str
    upstream_api_key: str
    upstream_request_shape: str
    user_agent: str
    https_proxy: str
    http_proxy: str

    # fallback
    default_models: Tuple[str, ...]
    not_found_retryable: bool
    model_error_pattern: str

    # limits
    request_timeout_s: float
    stream_idle_timeout_s: float
    max_request_bytes: int
    max_body_bytes: int
    rate_limit_per_minute: int

    # process
    port: int
    log_level: str
    log_path: str
    log_color: bool

    @classmethod
    def from_env(cls) -> AppConfig:
        max_request_bytes = _env_number("MAX_REQUEST_BYTES", 20_000, int)
        return cls(
            upstream_base_url=_env_text("UPSTREAM_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            upstream_api_key=_env_text("OPENAI_API_KEY", ""),
            upstream_request_shape=_env_text("UPSTREAM_REQUEST_SHAPE", "prompt").lower(),
            user_agent=_env_text("USER_AGENT", "chat-relay/1.0.0"),
            https_proxy=_env_text("HTTPS_PROXY", ""),
            http_proxy=_env_text("HTTP_PROXY", ""),
            default_models=_env_models("DEFAULT_MODELS", DEFAULT_MODELS),
            not_found_retryable=_env_flag("NOT_FOUND_RETRYABLE", True),
            model_error_pattern=_env_text("MODEL_ERROR_PATTERN", DEFAULT_MODEL_ERROR_PATTERN),
            request_timeout_s=_env_number("REQUEST_TIMEOUT_S", 60.0, float),
            stream_idle_timeout_s=_env_number("STREAM_IDLE_TIMEOUT_S", 60.0, float),
            max_request_bytes=max_request_bytes,
            max_body_bytes=_env_number("MAX_BODY_BYTES", default_body_limit(max_request_bytes), int),
            rate_limit_per_minute=_env_number("RATE_LIMIT_PER_MINUTE", 40, int),
            port=_env_number("PORT", 3000, int),
            log_level=_env_text("LOG_LEVEL", "INFO").upper(),
            log_path=_env_text("LOG_PATH", "/var/log/chat-relay/chat-relay.log"),
            log_color=_env_flag("LOG_COLOR", True),
        )

    @property
    def upstream_path(self) -> str:
        """Endpoint path matching the configured request shape."""
        if self.upstream_request_shape == "messages":
            return "/chat/completions"
        return "/responses"

    def validate(self, require_api_key: bool = True) -> None:
        """
        Raise ValueError naming the first bad setting.

        The service validates with require_api_key=False at startup: a missing
        key is reported per request as a server configuration error.
        """
        if require_api_key and not self.upstream_api_key:
            raise ValueError("OPENAI_API_KEY is required")
        if not self.upstream_base_url:
            raise ValueError("UPSTREAM_BASE_URL must be non-empty")
        if self.upstream_request_shape not in REQUEST_SHAPES:
            raise ValueError(f"UPSTREAM_REQUEST_SHAPE must be one of {', '.join(REQUEST_SHAPES)}")
        if not self.default_models:
            raise ValueError("DEFAULT_MODELS must list at least one model")
        try:
            re.compile(self.model_error_pattern)
        except re.error as e:
            raise ValueError(f"MODEL_ERROR_PATTERN is not a valid regex: {e}") from e

        positive = {
            "REQUEST_TIMEOUT_S": self.request_timeout_s,
            "STREAM_IDLE_TIMEOUT_S": self.stream_idle_timeout_s,
            "MAX_REQUEST_BYTES": self.max_request_bytes,
            "MAX_BODY_BYTES": self.max_body_bytes,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.rate_limit_per_minute < 0:
            raise ValueError("RATE_LIMIT_PER_MINUTE must be >= 0 (0 disables limiting)")
        if not (0 < self.port < 65536):
            raise ValueError("PORT must be between 1 and 65535")
        if not self.log_path or not self.user_agent:
            raise ValueError("LOG_PATH and USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    return AppConfig.from_env()
