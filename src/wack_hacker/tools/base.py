from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class ToolRequest:
    name: str
    args: Dict[str, object]


@dataclass(frozen=True)
class ToolResult:
    ok: bool
    output: str

    @classmethod
    def from_data(cls, data: Any) -> "ToolResult":
        ok = not (isinstance(data, dict) and "error" in data)
        return cls(ok=ok, output=json.dumps(data, ensure_ascii=False, default=str))


class Tool(Protocol):
    name: str
    description: str
    input_schema: Dict[str, Any]

    async def arun(self, request: ToolRequest) -> ToolResult:
        ...


class ToolRegistry:
    """Fixed-shape tool catalogue: name -> schema -> async runner."""

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        name = (getattr(tool, "name", "") or "").strip()
        if not name:
            raise ValueError("Tool name is required.")
        self._tools[name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get((name or "").strip())

    def names(self) -> List[str]:
        return sorted(self._tools.keys())

    def tool_schemas(self) -> List[Dict[str, Any]]:
        """Return Anthropic-style tool definitions for all registered tools."""
        return [
            {
                "name": name,
                "description": self._tools[name].description,
                "input_schema": dict(self._tools[name].input_schema),
            }
            for name in sorted(self._tools.keys())
        ]

    async def run(self, request: ToolRequest) -> ToolResult:
        tool = self.get(request.name)
        if tool is None:
            return ToolResult.from_data({"error": f"Unknown tool: {request.name}"})
        return await tool.arun(request)


def summarize_args(args: Dict[str, object], max_len: int = 60) -> str:
    """Human-readable ``key="value"`` rendering used for progress lines."""
    parts: List[str] = []
    for key, value in args.items():
        rendered = json.dumps(value, ensure_ascii=False, default=str)
        if len(rendered) > max_len:
            rendered = rendered[: max_len - 3] + "..."
        parts.append(f"{key}={rendered}")
    return " ".join(parts)
