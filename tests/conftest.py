"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Shared fixtures available to all test modules
- Test environment setup
"""

import json
import os
import sys
from pathlib import Path
from typing import Callable, List

import httpx
import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Ensure test environment variables are set early enough (during test collection),
# because the app loads config at import time.
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_PATH", "/tmp/chat_relay_test.log")
os.environ.setdefault("LOG_COLOR", "false")

from config import AppConfig  # noqa: E402


@pytest.fixture
def test_config():
    """Create test configuration."""
    return AppConfig(
        upstream_base_url="https://upstream.test/v1",
        upstream_api_key="test-key",
        upstream_request_shape="prompt",
        user_agent="test-agent",
        https_proxy="",
        http_proxy="",
        default_models=("m1", "m2", "m3"),
        not_found_retryable=True,
        model_error_pattern=r"model\b.*\b(not found|does not exist)|model_not_found",
        request_timeout_s=10.0,
        stream_idle_timeout_s=10.0,
        max_request_bytes=20_000,
        max_body_bytes=124_096,
        rate_limit_per_minute=0,
        port=3000,
        log_level="DEBUG",
        log_path="/tmp/chat_relay_test.log",
        log_color=False,
    )


class UpstreamRecorder:
    """Fake upstream: records the model of every request and answers via `respond`."""

    def __init__(self, respond: Callable[[str, dict], httpx.Response]) -> None:
        self.respond = respond
        self.models: List[str] = []
        self.bodies: List[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        self.models.append(body["model"])
        self.bodies.append(body)
        return self.respond(body["model"], body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def upstream_recorder():
    """Factory for fake upstreams backed by httpx.MockTransport."""
    return UpstreamRecorder
