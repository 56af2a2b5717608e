"""Chat relay: candidate resolution, fallback and reply assembly wired together."""

from __future__ import annotations

from typing import AsyncGenerator, Optional, Sequence

import httpx

from assembler import DisconnectProbe, ResponseAssembler
from config import AppConfig
from fallback import FallbackPolicy, ModelFallbackOrchestrator
from models import ChatReply, ChatRequest, FallbackResult, resolve_candidates
from upstream import UpstreamClient


class ChatRelay:
    """One instance per app; holds configuration only, never per-request state."""

    def __init__(
        self,
        config: AppConfig,
        upstream: Optional[UpstreamClient] = None,
        assembler: Optional[ResponseAssembler] = None,
    ) -> None:
        self._config = config
        self.upstream = upstream or UpstreamClient(config)
        self.orchestrator = ModelFallbackOrchestrator(self.upstream, FallbackPolicy.from_config(config))
        self.assembler = assembler or ResponseAssembler()

    def candidates_for(self, requested: Optional[Sequence[str]]) -> tuple[str, ...]:
        return resolve_candidates(requested, self._config.default_models)

    def new_client(self) -> httpx.AsyncClient:
        """Per-request HTTP client. Reads time out after the stream idle timeout."""
        connect_timeout = min(30.0, float(self._config.request_timeout_s))
        return httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=connect_timeout,
                write=connect_timeout,
                pool=connect_timeout,
                read=float(self._config.stream_idle_timeout_s),
            ),
            proxy=self.upstream.get_proxy_url(),
        )

    async def reply(
        self,
        client: httpx.AsyncClient,
        chat: ChatRequest,
        requested_models: Optional[Sequence[str]] = None,
        req_id: str = "-",
    ) -> ChatReply:
        """Batch mode: fallback over candidates, then extract the full reply."""
        result = await self.orchestrator.run(
            client, chat, self.candidates_for(requested_models), stream=False, req_id=req_id
        )
        return await self.assembler.assemble_reply(result.response, result.model, req_id)

    async def open_stream(
        self,
        client: httpx.AsyncClient,
        chat: ChatRequest,
        requested_models: Optional[Sequence[str]] = None,
        req_id: str = "-",
    ) -> FallbackResult:
        """Streaming mode, first half: pick a candidate whose stream opened successfully."""
        return await self.orchestrator.run(
            client, chat, self.candidates_for(requested_models), stream=True, req_id=req_id
        )

    def stream(
        self,
        result: FallbackResult,
        *,
        req_id: str = "-",
        is_disconnected: Optional[DisconnectProbe] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> AsyncGenerator[bytes, None]:
        """Streaming mode, second half: forward decoded deltas from the chosen response."""
        return self.assembler.stream_text(
            result.response,
            model=result.model,
            req_id=req_id,
            is_disconnected=is_disconnected,
            client=client,
        )
