"""Tests for the upstream client."""

import asyncio
import json
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from errors import AuthConfigError
from models import ChatRequest, ChatTurn
from upstream import UpstreamClient

MESSAGE = ChatRequest(message="hello")
TURNS = ChatRequest(turns=(ChatTurn("system", "be brief"), ChatTurn("user", "hi")))


class TestUpstreamClient:
    """Test request building and sending."""

    def test_get_headers(self, test_config):
        headers = UpstreamClient(test_config).get_headers()
        assert headers["Authorization"] == "Bearer test-key"
        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == "test-agent"

    def test_get_headers_without_key(self, test_config):
        with pytest.raises(AuthConfigError, match="OPENAI_API_KEY"):
            UpstreamClient(replace(test_config, upstream_api_key="")).get_headers()

    def test_prompt_shape_single_message(self, test_config):
        upstream = UpstreamClient(test_config)
        assert upstream.url == "https://upstream.test/v1/responses"
        assert upstream.build_payload(MESSAGE, "m1", stream=False) == {"model": "m1", "input": "hello"}
        assert upstream.build_payload(MESSAGE, "m1", stream=True) == {
            "model": "m1",
            "input": "hello",
            "stream": True,
        }

    def test_prompt_shape_turns(self, test_config):
        payload = UpstreamClient(test_config).build_payload(TURNS, "m1", stream=False)
        assert payload["input"] == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hi"},
        ]

    def test_messages_shape(self, test_config):
        upstream = UpstreamClient(replace(test_config, upstream_request_shape="messages"))
        assert upstream.url == "https://upstream.test/v1/chat/completions"
        assert upstream.build_payload(MESSAGE, "m2", stream=True) == {
            "model": "m2",
            "messages": [{"role": "user", "content": "hello"}],
            "stream": True,
        }
        assert upstream.build_payload(TURNS, "m2", stream=False)["messages"][0]["role"] == "system"

    def test_proxy_url(self, test_config):
        assert UpstreamClient(test_config).get_proxy_url() is None
        cfg = replace(test_config, http_proxy="http://proxy:1", https_proxy="http://proxy:2")
        assert UpstreamClient(cfg).get_proxy_url() == "http://proxy:2"

    @pytest.mark.asyncio
    async def test_send(self, test_config):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"output_text": "ok"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            resp = await UpstreamClient(test_config).send(client, MESSAGE, "m1", stream=False)

        assert resp.status_code == 200
        assert len(seen) == 1
        assert str(seen[0].url) == "https://upstream.test/v1/responses"
        assert seen[0].headers["authorization"] == "Bearer test-key"
        assert json.loads(seen[0].content) == {"model": "m1", "input": "hello"}

    @pytest.mark.asyncio
    async def test_send_does_not_interpret_error_bodies(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            resp = await UpstreamClient(test_config).send(client, MESSAGE, "m1", stream=True)
            assert resp.status_code == 500
            await resp.aclose()

    @pytest.mark.asyncio
    async def test_send_without_key_makes_no_call(self, test_config):
        mock_client = MagicMock(spec=httpx.AsyncClient)
        mock_client.send = AsyncMock()

        with pytest.raises(AuthConfigError):
            await UpstreamClient(replace(test_config, upstream_api_key="")).send(
                mock_client, MESSAGE, "m1", stream=False
            )

        mock_client.send.assert_not_called()
        mock_client.build_request.assert_not_called()

    @pytest.mark.asyncio
    async def test_read_error_snippet(self):
        mock_response = MagicMock()
        mock_response.aread = AsyncMock(return_value=b"Error message")

        snippet = await UpstreamClient.read_error_snippet(mock_response)
        assert snippet == "Error message"

    @pytest.mark.asyncio
    async def test_read_error_snippet_timeout(self):
        mock_response = MagicMock()
        mock_response.aread = AsyncMock(side_effect=asyncio.TimeoutError())

        snippet = await UpstreamClient.read_error_snippet(mock_response, timeout_s=0.1)
        assert snippet == ""


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
