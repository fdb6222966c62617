import json
import os
import unittest
from unittest.mock import patch

import httpx

from wack_hacker.providers.anthropic_provider import AnthropicProvider, ProviderError


class TestAnthropicProvider(unittest.IsolatedAsyncioTestCase):
    def _provider(self, handler, api_key: str = "sk-ant-test-key-123456") -> AnthropicProvider:
        provider = AnthropicProvider(
            api_key=api_key,
            model="claude-test",
            max_tokens=64,
            transport=httpx.MockTransport(handler),
        )
        self.addAsyncCleanup(provider.aclose)
        return provider

    async def test_generate_returns_text_and_sends_headers(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            seen["path"] = request.url.path
            return httpx.Response(200, json={
                "content": [{"type": "text", "text": "hello "}, {"type": "text", "text": "there"}],
                "stop_reason": "end_turn",
            })

        text = await self._provider(handler).generate("hi", system="be brief")
        self.assertEqual(text, "hello there")
        self.assertEqual(seen["path"], "/v1/messages")
        self.assertEqual(seen["headers"]["x-api-key"], "sk-ant-test-key-123456")
        self.assertEqual(seen["headers"]["anthropic-version"], "2023-06-01")
        self.assertEqual(seen["body"]["model"], "claude-test")
        self.assertEqual(seen["body"]["system"], "be brief")
        self.assertNotIn("tools", seen["body"])

    async def test_tool_use_blocks_are_normalized(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            self.assertEqual(body["tools"][0]["name"], "searchChannels")
            self.assertEqual(body["tool_choice"], {"type": "none"})
            return httpx.Response(200, json={
                "content": [
                    {"type": "tool_use", "id": "tu_1", "name": "searchChannels", "input": {"pattern": "hack"}},
                    {"type": "thinking", "thinking": "ignored"},
                ],
                "stop_reason": "tool_use",
                "usage": {"input_tokens": 3},
            })

        response = await self._provider(handler).generate_with_tools(
            messages=[{"role": "user", "content": "x"}],
            tools=[{"name": "searchChannels", "description": "d", "input_schema": {"type": "object"}}],
            tool_choice={"type": "none"},
        )
        self.assertEqual(response["stop_reason"], "tool_use")
        self.assertEqual(response["content"], [
            {"type": "tool_use", "id": "tu_1", "name": "searchChannels", "input": {"pattern": "hack"}},
        ])

    async def test_http_error_status_raises(self):
        provider = self._provider(lambda request: httpx.Response(529, text="overloaded"))
        with self.assertRaises(ProviderError) as ctx:
            await provider.generate("hi")
        self.assertEqual(ctx.exception.status_code, 529)

    async def test_transport_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(ProviderError):
            await self._provider(handler).generate("hi")

    async def test_missing_key_raises_without_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": ""}):
            provider = AnthropicProvider(api_key="", model="m", transport=httpx.MockTransport(handler))
        with self.assertRaises(ProviderError):
            await provider.generate("hi")
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
