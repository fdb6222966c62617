from typing import Any, Dict, Optional, Protocol, Sequence


class CompletionProvider(Protocol):
    async def generate(
        self,
        prompt: str,
        system: str = "",
        correlation_id: str = "",
    ) -> str:
        ...


class ToolCallingProvider(Protocol):
    async def generate_with_tools(
        self,
        messages: Sequence[Dict[str, Any]],
        tools: Sequence[Dict[str, Any]],
        system: str = "",
        tool_choice: Optional[Dict[str, Any]] = None,
        correlation_id: str = "",
    ) -> Dict[str, Any]:
        ...
