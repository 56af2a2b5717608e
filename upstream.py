"""Upstream text-generation API communication."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict

import httpx

from config import AppConfig
from errors import AuthConfigError
from models import ChatRequest

log = logging.getLogger("chat_relay")


class UpstreamClient:
    """Build and send one request to the text-generation API."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def url(self) -> str:
        return f"{self._config.upstream_base_url}{self._config.upstream_path}"

    def get_headers(self) -> Dict[str, str]:
        """Get default headers for the upstream API."""
        if not self._config.upstream_api_key:
            raise AuthConfigError("OPENAI_API_KEY not set in environment")
        return {
            "Authorization": f"Bearer {self._config.upstream_api_key}",
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
        }

    def get_proxy_url(self) -> str | None:
        """Outbound proxy for the upstream client; HTTPS_PROXY wins over HTTP_PROXY."""
        return self._config.https_proxy or self._config.http_proxy or None

    def build_payload(self, chat: ChatRequest, model: str, stream: bool) -> Dict[str, Any]:
        """
        Build the request body for the configured request shape.

        prompt:   {"model", "input", "stream"?}   (Responses API)
        messages: {"model", "messages", "stream"} (Chat Completions API)
        """
        if self._config.upstream_request_shape == "messages":
            return {"model": model, "messages": chat.as_turns(), "stream": stream}

        payload: Dict[str, Any] = {
            "model": model,
            "input": chat.message if chat.message is not None else chat.as_turns(),
        }
        if stream:
            payload["stream"] = True
        return payload

    async def send(
        self,
        client: httpx.AsyncClient,
        chat: ChatRequest,
        model: str,
        stream: bool,
    ) -> httpx.Response:
        """
        Send one request for `model` and return the raw response.

        For streaming requests the body is left unread so the caller can pull it
        chunk by chunk. The body is never interpreted here.
        """
        headers = self.get_headers()
        payload = self.build_payload(chat, model, stream)

        started = time.monotonic()
        req = client.build_request("POST", self.url, headers=headers, json=payload)
        resp = await client.send(req, stream=stream)
        elapsed_ms = (time.monotonic() - started) * 1000
        log.info(
            "Upstream call model=%s stream=%s status=%s ms=%.1f",
            model,
            stream,
            resp.status_code,
            elapsed_ms,
        )

        if not resp.is_success:
            log.warning(
                "Upstream error model=%s status=%s content-type=%s",
                model,
                resp.status_code,
                resp.headers.get("content-type", ""),
            )
        return resp

    @staticmethod
    async def read_error_snippet(
        resp: httpx.Response, limit: int = 2000, timeout_s: float = 2.0
    ) -> str:
        """First `limit` chars of an error body; empty if the read stalls or fails."""
        try:
            body = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
        except (asyncio.TimeoutError, httpx.HTTPError):
            return ""
        return body.decode("utf-8", errors="replace")[:limit]
