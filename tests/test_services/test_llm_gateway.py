"""
LLM Gateway Tests — HTTP is served by httpx.MockTransport.
"""

import json

import httpx
import pytest

from rainwatch.services.llm_gateway import ANTHROPIC_API_URL, LLMGateway


def _transport(status: int = 200, body: dict = None, seen: list = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=body or {})
    return httpx.MockTransport(handler)


class TestLLMGateway:
    @pytest.mark.asyncio
    async def test_joins_text_blocks(self):
        seen = []
        body = {"content": [
            {"type": "text", "text": '{"text_en": '},
            {"type": "tool_use", "id": "x"},
            {"type": "text", "text": '"hi"}'},
        ]}
        gateway = LLMGateway(api_key="sk-test", transport=_transport(body=body, seen=seen))

        text = await gateway.generate("system", "user", model="m", max_tokens=50)

        assert text == '{"text_en": "hi"}'
        request = seen[0]
        assert str(request.url) == ANTHROPIC_API_URL
        assert request.headers["x-api-key"] == "sk-test"
        payload = json.loads(request.content)
        assert payload["model"] == "m"
        assert payload["system"] == "system"
        assert payload["messages"] == [{"role": "user", "content": "user"}]

    @pytest.mark.asyncio
    async def test_without_key_returns_empty(self):
        gateway = LLMGateway(api_key="")
        assert not gateway.available
        assert await gateway.generate("s", "u") == ""

    @pytest.mark.asyncio
    async def test_http_error_propagates(self):
        gateway = LLMGateway(api_key="sk-test", transport=_transport(status=529))
        with pytest.raises(httpx.HTTPStatusError):
            await gateway.generate("s", "u")

    @pytest.mark.asyncio
    async def test_html_body_is_value_error(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, text="<html>captive portal</html>")
        )
        gateway = LLMGateway(api_key="sk-test", transport=transport)
        with pytest.raises(ValueError):
            await gateway.generate("s", "u")

    @pytest.mark.asyncio
    async def test_missing_content_is_value_error(self):
        gateway = LLMGateway(api_key="sk-test", transport=_transport(body={"type": "error"}))
        with pytest.raises(ValueError, match="content"):
            await gateway.generate("s", "u")

    @pytest.mark.asyncio
    async def test_non_dict_blocks_skipped(self):
        body = {"content": ["stray", {"type": "text", "text": "ok"}, {"type": "text", "text": 7}]}
        gateway = LLMGateway(api_key="sk-test", transport=_transport(body=body))
        assert await gateway.generate("s", "u") == "ok"
