"""
Chat relay service -> OpenAI-style text-generation API as upstream.

POST /chat relays one chat message (or turn list) upstream, trying candidate
models in order, and answers either with JSON `{"reply": "..."}` or with a
plain-text stream of token fragments.

Streaming is selected by `"stream": true` in the body, `?stream=1`, or an
Accept header containing `text/event-stream`.
"""

from __future__ import annotations

import contextlib
import logging
import math
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from config import AppConfig, load_config
from errors import RateLimitExceeded, RelayError, ValidationError
from logger import setup_logging
from ratelimit import RateLimiter
from relay import ChatRelay
from utils import dump_config, load_env_files
from validator import validate_candidate_models, validate_chat_payload, wants_stream

log = logging.getLogger("chat_relay")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def _request_id(request: Request) -> str:
    return (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or uuid.uuid4().hex
    )


def _check_content_length(request: Request, max_bytes: int) -> None:
    """Basic request size guard before the body is read."""
    cl = request.headers.get("content-length")
    if not cl:
        return
    try:
        n = int(cl)
    except ValueError:
        raise ValidationError(f"Invalid Content-Length header: {cl!r}")
    if n < 0:
        raise ValidationError("Invalid Content-Length: must be non-negative")
    if n > max_bytes:
        raise ValidationError(f"Request too large: {n} bytes (max {max_bytes})", status_code=413)


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Every relay failure reaches the caller as `{"error": "..."}`."""
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after_s)))}
    if exc.status_code >= 500:
        log.error("POST %s failed status=%s: %s", request.url.path, exc.status_code, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=headers)


def create_app(config: AppConfig) -> FastAPI:
    """Build the FastAPI app. All cross-request state hangs off `app.state`."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info(
            "Chat relay ready upstream=%s%s default_models=%s",
            config.upstream_base_url,
            config.upstream_path,
            list(config.default_models),
        )
        yield
        log.info("Chat relay shutting down")

    app = FastAPI(title="chat-relay", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    app.state.relay = ChatRelay(config)
    app.state.rate_limiter = RateLimiter(config.rate_limit_per_minute)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RelayError, relay_error_handler)

    @app.get("/")
    async def status() -> Dict[str, str]:
        """Status route for browsers."""
        return {"status": "online"}

    @app.get("/healthz")
    async def healthz() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.post("/chat")
    async def chat(request: Request) -> Response:
        """Relay one chat request upstream."""
        client_ip = request.client.host if request.client else "unknown"
        request.app.state.rate_limiter.check(client_ip)

        _check_content_length(request, config.max_body_bytes)
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Invalid JSON body")

        chat_request = validate_chat_payload(body, config.max_request_bytes)
        requested_models = validate_candidate_models(body.get("models"))
        stream = wants_stream(body, request.query_params.get("stream"), request.headers.get("accept"))

        req_id = _request_id(request)
        log.info(
            "Incoming chat req_id=%s from=%s stream=%s turns=%d models=%s",
            req_id,
            client_ip,
            stream,
            len(chat_request.as_turns()),
            requested_models or "default",
        )

        relay: ChatRelay = request.app.state.relay
        client = relay.new_client()

        if not stream:
            try:
                reply = await relay.reply(client, chat_request, requested_models, req_id)
            finally:
                await client.aclose()
            return JSONResponse({"reply": reply.text})

        try:
            result = await relay.open_stream(client, chat_request, requested_models, req_id)
        except Exception:
            with contextlib.suppress(Exception):
                await client.aclose()
            raise

        return StreamingResponse(
            relay.stream(
                result,
                req_id=req_id,
                is_disconnected=request.is_disconnected,
                client=client,
            ),
            media_type="text/plain; charset=utf-8",
            headers={**STREAM_HEADERS, "X-Relay-Model": result.model},
        )

    return app


# Load environment
env_files = load_env_files()

# Load configuration
config = load_config()
config.validate(require_api_key=False)

# Initialize logging
setup_logging(config)
dump_config(config, env_files)

app = create_app(config)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
