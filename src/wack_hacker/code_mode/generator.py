from __future__ import annotations

import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from wack_hacker.code_mode.errors import GenerationFailure
from wack_hacker.code_mode.models import FeedbackHistory, GenerationResult, StepNotice
from wack_hacker.code_mode.prompts import (
    CODE_GENERATOR_SYSTEM_PROMPT,
    FINAL_STEP_NUDGE,
    GENERATOR_USER_TEMPLATE,
    REGENERATION_TEMPLATE,
)
from wack_hacker.domain.contracts import ToolCallingProvider
from wack_hacker.observability.structured_log import log_json
from wack_hacker.tools.base import ToolRegistry, ToolRequest, ToolResult, summarize_args
from wack_hacker.util import preview

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 8
# Maximum characters for a single tool result fed back to the model.
TOOL_RESULT_MAX_CHARS = 4000

StepCallback = Callable[[StepNotice], Awaitable[None]]

_FENCED_BLOCK_RE = re.compile(r"```(?:python3|python|py)?[^\n]*\n([\s\S]*?)\n?```")


def strip_code_fences(text: str) -> str:
    value = (text or "").strip()
    match = _FENCED_BLOCK_RE.search(value)
    if match:
        return match.group(1).strip("\n").rstrip()
    return value


def build_regeneration_request(request_text: str, previous_code: str, history: FeedbackHistory) -> str:
    return REGENERATION_TEMPLATE.format(
        request=request_text,
        code=previous_code,
        feedback=history.render(),
    )


def _text_of(blocks: List[Dict[str, Any]]) -> str:
    return "".join(str(b.get("text") or "") for b in blocks if b.get("type") == "text")


class CodeGenerator:
    """Bounded agentic loop: research with guild tools, then emit a main() body.

    The loop makes at most ``max_steps`` model calls. The last call forbids
    tool use, so the model must answer with code even if it never stops
    researching on its own.
    """

    def __init__(
        self,
        provider: ToolCallingProvider,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self._provider = provider
        self._max_steps = max(1, int(max_steps))

    @property
    def max_steps(self) -> int:
        return self._max_steps

    async def generate(
        self,
        request_text: str,
        registry: ToolRegistry,
        on_step: Optional[StepCallback] = None,
        correlation_id: str = "",
    ) -> GenerationResult:
        started = time.monotonic()
        log_json(
            logger, "code_mode.generation.start",
            run_id=correlation_id, request_preview=preview(request_text, 200),
            request_length=len(request_text), max_steps=self._max_steps,
        )
        tools = registry.tool_schemas()
        messages: List[Dict[str, Any]] = [
            {"role": "user", "content": GENERATOR_USER_TEMPLATE.format(request=request_text)},
        ]
        tool_calls = 0
        final_text = ""

        for step in range(1, self._max_steps + 1):
            last_step = step == self._max_steps
            if last_step and step > 1:
                _append_user_text(messages, FINAL_STEP_NUDGE)
            try:
                response = await self._provider.generate_with_tools(
                    messages=messages,
                    tools=tools,
                    system=CODE_GENERATOR_SYSTEM_PROMPT,
                    tool_choice={"type": "none"} if last_step else None,
                    correlation_id=correlation_id,
                )
            except Exception as exc:
                raise GenerationFailure(f"code generation failed at step {step}: {exc}", cause=exc) from exc

            blocks = [b for b in response.get("content") or [] if isinstance(b, dict)]
            text = _text_of(blocks)
            tool_uses = [b for b in blocks if b.get("type") == "tool_use"]
            if not tool_uses or last_step:
                final_text = text
                break

            if text.strip():
                await self._notify(on_step, StepNotice(kind="thought", text=text.strip()))
            messages.append({"role": "assistant", "content": blocks})
            results: List[Dict[str, Any]] = []
            for use in tool_uses:
                tool_calls += 1
                results.append(await self._run_tool(registry, use, on_step, correlation_id))
            messages.append({"role": "user", "content": results})

        code = strip_code_fences(final_text)
        if not code:
            raise GenerationFailure("model produced no code")

        duration_ms = (time.monotonic() - started) * 1000
        log_json(
            logger, "code_mode.generation.completed",
            run_id=correlation_id, code_length=len(code), code_lines=len(code.splitlines()),
            tool_calls=tool_calls, duration_ms=int(duration_ms),
        )
        return GenerationResult(code=code, duration_ms=duration_ms, tool_calls=tool_calls)

    async def _run_tool(
        self,
        registry: ToolRegistry,
        use: Dict[str, Any],
        on_step: Optional[StepCallback],
        correlation_id: str,
    ) -> Dict[str, Any]:
        name = str(use.get("name") or "")
        args = use.get("input") if isinstance(use.get("input"), dict) else {}
        await self._notify(
            on_step,
            StepNotice(kind="tool", text=f"{name} {summarize_args(args)}".strip(), tool_name=name, args=args),
        )
        try:
            result = await registry.run(ToolRequest(name=name, args=args))
        except Exception as exc:
            logger.warning("guild tool %s failed: %s", name, exc)
            result = ToolResult.from_data({"error": f"{type(exc).__name__}: {exc}"})
        log_json(logger, "code_mode.generation.tool", run_id=correlation_id, tool=name, ok=result.ok)
        return {
            "type": "tool_result",
            "tool_use_id": str(use.get("id") or ""),
            "content": result.output[:TOOL_RESULT_MAX_CHARS],
            "is_error": not result.ok,
        }

    async def _notify(self, on_step: Optional[StepCallback], notice: StepNotice) -> None:
        if on_step is None:
            return
        try:
            await on_step(notice)
        except Exception:
            logger.debug("step notification dropped", exc_info=True)


def _append_user_text(messages: List[Dict[str, Any]], text: str) -> None:
    last = messages[-1]
    if last.get("role") == "user" and isinstance(last.get("content"), list):
        last["content"] = list(last["content"]) + [{"type": "text", "text": text}]
    else:
        messages.append({"role": "user", "content": text})
