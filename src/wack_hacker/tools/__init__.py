from wack_hacker.tools.base import ToolRegistry, ToolRequest, ToolResult, summarize_args
from wack_hacker.tools.guild import GUILD_TOOL_TYPES, build_guild_tool_registry

__all__ = [
    "GUILD_TOOL_TYPES",
    "ToolRegistry",
    "ToolRequest",
    "ToolResult",
    "build_guild_tool_registry",
    "summarize_args",
]
