"""Turn a successful upstream response into the client-facing reply."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable, Optional

import httpx

from errors import ClientDisconnected, UpstreamEmptyReply
from models import ChatReply, parse_json_object
from sse_handler import StreamFrameDecoder, extract_text, iter_token_deltas, matching_shape

log = logging.getLogger("chat_relay")

DisconnectProbe = Callable[[], Awaitable[bool]]


def _is_event_stream(response: httpx.Response) -> Optional[bool]:
    """True for a `text/event-stream` upstream; None when the framing is unknown."""
    content_type = response.headers.get("content-type")
    if isinstance(content_type, str) and "text/event-stream" in content_type.lower():
        return True
    return None


class ResponseAssembler:
    """Batch: extract the full reply. Streaming: forward token deltas as they decode."""

    async def assemble_reply(
        self, response: httpx.Response, model: str, req_id: str = "-"
    ) -> ChatReply:
        """Read the whole body and extract the reply text, or raise UpstreamEmptyReply."""
        try:
            raw = await response.aread()
        finally:
            await response.aclose()

        body = parse_json_object(raw)
        text = extract_text(body)
        if not text:
            log.error(
                "Upstream non-stream response has no reply text req_id=%s model=%s body=%r",
                req_id,
                model,
                raw[:1000],
            )
            raise UpstreamEmptyReply("Upstream returned no reply text")

        log.info(
            "Reply assembled req_id=%s model=%s shape=%s chars=%d",
            req_id,
            model,
            matching_shape(body),
            len(text),
        )
        return ChatReply(text=text, model=model)

    @staticmethod
    async def _pull_chunks(
        response: httpx.Response, is_disconnected: Optional[DisconnectProbe]
    ) -> AsyncIterator[bytes]:
        """Yield upstream byte chunks, checking the client before each decode cycle."""
        async for chunk in response.aiter_bytes():
            if is_disconnected is not None and await is_disconnected():
                raise ClientDisconnected()
            yield chunk

    async def stream_text(
        self,
        response: httpx.Response,
        *,
        model: str,
        req_id: str = "-",
        is_disconnected: Optional[DisconnectProbe] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> AsyncGenerator[bytes, None]:
        """
        Forward token deltas to the client sink in decode order.

        The generator ends exactly once: on the terminal sentinel, at end of
        stream, or when the upstream fails mid-stream (no structured error is
        sent once bytes have flowed). A client disconnect aborts the upstream.
        The upstream response (and `client`, if given) is always closed.
        """
        t0 = time.monotonic()
        forwarded = 0
        decoder = StreamFrameDecoder(sse=_is_event_stream(response))
        try:
            async with contextlib.aclosing(self._pull_chunks(response, is_disconnected)) as chunks:
                async for delta in iter_token_deltas(chunks, decoder):
                    forwarded += 1
                    yield delta.encode("utf-8")
            log.info(
                "Stream finished req_id=%s model=%s deltas=%d ms=%.1f",
                req_id,
                model,
                forwarded,
                (time.monotonic() - t0) * 1000,
            )
        except ClientDisconnected:
            log.info(
                "Client disconnected req_id=%s model=%s after %d deltas; aborting upstream",
                req_id,
                model,
                forwarded,
            )
        except asyncio.CancelledError:
            log.info("Stream cancelled req_id=%s model=%s; aborting upstream", req_id, model)
            raise
        except httpx.HTTPError as e:
            log.warning(
                "Upstream stream ended with error req_id=%s model=%s deltas=%d err=%r",
                req_id,
                model,
                forwarded,
                e,
            )
        finally:
            with contextlib.suppress(Exception):
                await response.aclose()
            if client is not None:
                with contextlib.suppress(Exception):
                    await client.aclose()
