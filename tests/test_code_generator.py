import copy
import unittest
from typing import Any, Dict, List, Optional

from wack_hacker.code_mode.errors import GenerationFailure
from wack_hacker.code_mode.generator import (
    CodeGenerator,
    build_regeneration_request,
    strip_code_fences,
)
from wack_hacker.code_mode.models import FeedbackHistory, StepNotice
from wack_hacker.tools.base import ToolRegistry, ToolRequest, ToolResult


class _ScriptedProvider:
    def __init__(self, responses: List[Dict[str, Any]], repeat_last: bool = False) -> None:
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.calls: List[Dict[str, Any]] = []

    async def generate_with_tools(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        system: str = "",
        tool_choice: Optional[Dict[str, Any]] = None,
        correlation_id: str = "",
    ) -> Dict[str, Any]:
        self.calls.append({"messages": copy.deepcopy(messages), "tools": tools, "tool_choice": tool_choice})
        if len(self.responses) > 1 or not self.repeat_last:
            return self.responses.pop(0)
        return self.responses[0]


class _EchoChannelsTool:
    name = "searchChannels"
    description = "Search channels"
    input_schema = {"type": "object", "properties": {"pattern": {"type": "string"}}, "required": ["pattern"]}

    def __init__(self) -> None:
        self.requests: List[ToolRequest] = []

    async def arun(self, request: ToolRequest) -> ToolResult:
        self.requests.append(request)
        return ToolResult.from_data([{"id": "42", "name": "hack-night", "type": "text"}])


def _tool_use(name: str, args: Dict[str, Any], use_id: str = "tu_1") -> Dict[str, Any]:
    return {"content": [{"type": "tool_use", "id": use_id, "name": name, "input": args}], "stop_reason": "tool_use"}


def _text(text: str) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "stop_reason": "end_turn"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestStripCodeFences(unittest.TestCase):
    def test_python_fence(self):
        self.assertEqual(strip_code_fences("```python\nlog('hi')\n```"), "log('hi')")

    def test_bare_fence_with_prose_around(self):
        text = "Here you go:\n```\nlog(1)\nlog(2)\n```\nDone."
        self.assertEqual(strip_code_fences(text), "log(1)\nlog(2)")

    def test_unfenced_text_is_returned_trimmed(self):
        self.assertEqual(strip_code_fences("  log('x')  \n"), "log('x')")


class TestRegenerationRequest(unittest.TestCase):
    def test_feedback_is_listed_in_submission_order(self):
        history = FeedbackHistory()
        history.append("only text channels")
        history.append("also log the ids")
        prompt = build_regeneration_request("list channels", "log('old')", history)
        self.assertIn("list channels", prompt)
        self.assertIn("log('old')", prompt)
        self.assertLess(prompt.index("Feedback 1: only text channels"), prompt.index("Feedback 2: also log the ids"))


# ---------------------------------------------------------------------------
# Agentic loop
# ---------------------------------------------------------------------------


class TestCodeGenerator(unittest.IsolatedAsyncioTestCase):
    def _registry(self) -> ToolRegistry:
        self.tool = _EchoChannelsTool()
        registry = ToolRegistry()
        registry.register(self.tool)
        return registry

    async def test_tool_call_then_code(self):
        provider = _ScriptedProvider([
            _tool_use("searchChannels", {"pattern": "hack"}),
            _text("```python\nchannel = guild.get_channel(42)\nlog(f'Channel: #{channel.name}')\n```"),
        ])
        notices: List[StepNotice] = []

        async def on_step(notice: StepNotice) -> None:
            notices.append(notice)

        result = await CodeGenerator(provider).generate("list channels containing 'hack'", self._registry(), on_step)

        self.assertEqual(result.tool_calls, 1)
        self.assertTrue(result.code.startswith("channel = guild.get_channel(42)"))
        self.assertNotIn("```", result.code)
        self.assertGreaterEqual(result.duration_ms, 0)
        self.assertEqual(self.tool.requests[0].args, {"pattern": "hack"})
        self.assertEqual(notices[0].kind, "tool")
        self.assertEqual(notices[0].tool_name, "searchChannels")
        self.assertIn('pattern="hack"', notices[0].text)

        tool_result_turn = provider.calls[1]["messages"][-1]
        self.assertEqual(tool_result_turn["role"], "user")
        self.assertEqual(tool_result_turn["content"][0]["tool_use_id"], "tu_1")
        self.assertIn("hack-night", tool_result_turn["content"][0]["content"])

    async def test_step_limit_is_a_hard_cap(self):
        provider = _ScriptedProvider(
            [{"content": [
                {"type": "text", "text": "log('fallback')"},
                {"type": "tool_use", "id": "tu", "name": "searchChannels", "input": {"pattern": "x"}},
            ]}],
            repeat_last=True,
        )
        result = await CodeGenerator(provider, max_steps=3).generate("loop forever", self._registry())
        self.assertEqual(len(provider.calls), 3)
        self.assertEqual(provider.calls[-1]["tool_choice"], {"type": "none"})
        self.assertIsNone(provider.calls[0]["tool_choice"])
        self.assertEqual(result.tool_calls, 2)
        self.assertEqual(result.code, "log('fallback')")

    async def test_unknown_tool_is_reported_back_not_raised(self):
        provider = _ScriptedProvider([
            _tool_use("dropDatabase", {}),
            _text("log('ok')"),
        ])
        result = await CodeGenerator(provider).generate("x", self._registry())
        self.assertEqual(result.code, "log('ok')")
        tool_result = provider.calls[1]["messages"][-1]["content"][0]
        self.assertTrue(tool_result["is_error"])

    async def test_dropped_step_notifications_do_not_fail(self):
        provider = _ScriptedProvider([_tool_use("searchChannels", {"pattern": "a"}), _text("log(1)")])

        async def on_step(notice: StepNotice) -> None:
            raise RuntimeError("discord is down")

        result = await CodeGenerator(provider).generate("x", self._registry(), on_step)
        self.assertEqual(result.code, "log(1)")

    async def test_empty_output_is_generation_failure(self):
        provider = _ScriptedProvider([_text("   ")])
        with self.assertRaises(GenerationFailure):
            await CodeGenerator(provider).generate("x", self._registry())

    async def test_provider_error_is_generation_failure(self):
        class _Broken:
            async def generate_with_tools(self, **kwargs):
                raise RuntimeError("503")

        with self.assertRaises(GenerationFailure) as ctx:
            await CodeGenerator(_Broken()).generate("x", self._registry())
        self.assertIsInstance(ctx.exception.cause, RuntimeError)

    async def test_regeneration_prompt_keeps_feedback_order(self):
        history = FeedbackHistory()
        history.append("F1 use text channels")
        history.append("F2 include ids")
        provider = _ScriptedProvider([_text("log('v3')")])
        await CodeGenerator(provider).generate(
            build_regeneration_request("list channels", "log('v2')", history), self._registry(),
        )
        first_prompt = provider.calls[0]["messages"][0]["content"]
        self.assertLess(first_prompt.index("F1 use text channels"), first_prompt.index("F2 include ids"))


if __name__ == "__main__":
    unittest.main()
