"""Read-only guild inspection tools offered to the code generator.

Every tool answers with JSON-serializable data; lookups that miss return an
``{"error": ...}`` object instead of raising so the model can recover.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import discord

from wack_hacker.tools.base import ToolRegistry, ToolRequest, ToolResult

SEARCH_RESULT_LIMIT = 15

CHANNEL_TYPE_FILTERS: Dict[str, frozenset] = {
    "text": frozenset({discord.ChannelType.text, discord.ChannelType.news}),
    "voice": frozenset({discord.ChannelType.voice, discord.ChannelType.stage_voice}),
    "forum": frozenset({discord.ChannelType.forum}),
    "category": frozenset({discord.ChannelType.category}),
}


def _clamp(value: object, default: int, low: int, high: int) -> int:
    try:
        number = int(value) if value is not None else default
    except (TypeError, ValueError):
        number = default
    return max(low, min(high, number))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _snowflake(identifier: str) -> Optional[int]:
    value = (identifier or "").strip()
    return int(value) if value.isdigit() else None


def _parent_id(channel: discord.abc.GuildChannel) -> Optional[str]:
    category_id = getattr(channel, "category_id", None)
    return str(category_id) if category_id else None


def _role_summary(role: discord.Role) -> Dict[str, Any]:
    return {
        "id": str(role.id),
        "name": role.name,
        "color": str(role.color),
        "memberCount": len(role.members),
        "position": role.position,
        "mentionable": role.mentionable,
    }


def _member_summary(member: discord.Member) -> Dict[str, Any]:
    return {
        "id": str(member.id),
        "username": member.name,
        "displayName": member.display_name,
        "joinedAt": _iso(member.joined_at),
    }


async def _all_members(guild: discord.Guild) -> List[discord.Member]:
    if guild.chunked:
        return list(guild.members)
    return [member async for member in guild.fetch_members(limit=None)]


def _find_role(guild: discord.Guild, identifier: str) -> Optional[discord.Role]:
    role_id = _snowflake(identifier)
    if role_id is not None:
        role = guild.get_role(role_id)
        if role is not None:
            return role
    wanted = (identifier or "").strip().lower()
    return next((r for r in guild.roles if r.name.lower() == wanted), None)


def _find_channel(guild: discord.Guild, identifier: str) -> Optional[discord.abc.GuildChannel]:
    channel_id = _snowflake(identifier)
    if channel_id is not None:
        channel = guild.get_channel(channel_id)
        if channel is not None:
            return channel
    wanted = (identifier or "").strip().lower()
    return next((c for c in guild.channels if (c.name or "").lower() == wanted), None)


class _GuildTool:
    name = ""
    description = ""
    input_schema: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

    def __init__(self, guild: discord.Guild) -> None:
        self._guild = guild

    async def arun(self, request: ToolRequest) -> ToolResult:
        return ToolResult.from_data(await self.inspect(dict(request.args or {})))

    async def inspect(self, args: Dict[str, Any]) -> Any:
        raise NotImplementedError


class SearchRolesTool(_GuildTool):
    name = "searchRoles"
    description = (
        "Search for Discord roles by name pattern. Returns matching roles with their IDs, "
        "names, colors, and member counts."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Role name pattern to search for (case-insensitive)"},
        },
        "required": ["pattern"],
    }

    async def inspect(self, args: Dict[str, Any]) -> Any:
        pattern = str(args.get("pattern") or "").lower()
        matches = [r for r in self._guild.roles if pattern in r.name.lower()]
        return [_role_summary(r) for r in matches[:SEARCH_RESULT_LIMIT]]


class SearchChannelsTool(_GuildTool):
    name = "searchChannels"
    description = (
        "Search for Discord channels by name pattern. Returns matching channels with their "
        "IDs, names, and types."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Channel name pattern to search for (case-insensitive)"},
            "type": {
                "type": "string",
                "enum": ["text", "voice", "forum", "category", "all"],
                "description": "Filter by channel type",
            },
        },
        "required": ["pattern"],
    }

    async def inspect(self, args: Dict[str, Any]) -> Any:
        pattern = str(args.get("pattern") or "").lower()
        channel_type = str(args.get("type") or "all").lower()
        channels: Iterable[discord.abc.GuildChannel] = (
            c for c in self._guild.channels if pattern in (c.name or "").lower()
        )
        allowed = CHANNEL_TYPE_FILTERS.get(channel_type)
        if allowed is not None:
            channels = (c for c in channels if c.type in allowed)
        return [
            {
                "id": str(c.id),
                "name": c.name,
                "type": str(c.type),
                "parentId": _parent_id(c),
            }
            for c in list(channels)[:SEARCH_RESULT_LIMIT]
        ]


class GetRoleInfoTool(_GuildTool):
    name = "getRoleInfo"
    description = (
        "Get detailed information about a specific role by ID or exact name. Use this after "
        "searchRoles to get more details."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "identifier": {"type": "string", "description": "Role ID or exact role name"},
        },
        "required": ["identifier"],
    }

    async def inspect(self, args: Dict[str, Any]) -> Any:
        identifier = str(args.get("identifier") or "")
        role = _find_role(self._guild, identifier)
        if role is None:
            return {"error": f"Role not found: {identifier}"}
        info = _role_summary(role)
        info.update({
            "hoisted": role.hoist,
            "managed": role.managed,
            "permissions": [name for name, enabled in role.permissions if enabled],
        })
        return info


class GetChannelInfoTool(_GuildTool):
    name = "getChannelInfo"
    description = (
        "Get detailed information about a specific channel by ID or exact name. Use this after "
        "searchChannels to get more details."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "identifier": {"type": "string", "description": "Channel ID or exact channel name"},
        },
        "required": ["identifier"],
    }

    async def inspect(self, args: Dict[str, Any]) -> Any:
        identifier = str(args.get("identifier") or "")
        channel = _find_channel(self._guild, identifier)
        if channel is None:
            return {"error": f"Channel not found: {identifier}"}
        category = getattr(channel, "category", None)
        return {
            "id": str(channel.id),
            "name": channel.name,
            "type": str(channel.type),
            "parentId": _parent_id(channel),
            "parentName": category.name if category else None,
            "position": getattr(channel, "position", None),
        }


class GetRoleMembersTool(_GuildTool):
    name = "getRoleMembers"
    description = (
        "Get a sample of members who have a specific role. Useful for understanding who has a "
        "role before modifying it."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "roleId": {"type": "string", "description": "The role ID to get members for"},
            "limit": {
                "type": "integer",
                "minimum": 1,
                "maximum": 25,
                "description": "Maximum number of members to return (default: 10)",
            },
        },
        "required": ["roleId"],
    }

    async def inspect(self, args: Dict[str, Any]) -> Any:
        role_id = str(args.get("roleId") or "")
        limit = _clamp(args.get("limit"), 10, 1, 25)
        snowflake = _snowflake(role_id)
        role = self._guild.get_role(snowflake) if snowflake is not None else None
        if role is None:
            return {"error": f"Role not found: {role_id}"}
        return {
            "roleId": str(role.id),
            "roleName": role.name,
            "totalMemberCount": len(role.members),
            "sampleMembers": [_member_summary(m) for m in role.members[:limit]],
        }


class CountMembersByJoinDateTool(_GuildTool):
    name = "countMembersByJoinDate"
    description = (
        "Count members who joined after a specific date. Useful for bulk operations based on "
        "join date."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "after": {
                "type": "string",
                "description": "ISO date string (e.g., '2026-01-01') - count members who joined after this date",
            },
            "roleId": {"type": "string", "description": "Optional: only count members with this role"},
        },
        "required": ["after"],
    }

    async def inspect(self, args: Dict[str, Any]) -> Any:
        after = str(args.get("after") or "")
        try:
            cutoff = datetime.fromisoformat(after)
        except ValueError:
            return {"error": f"Invalid date: {after}"}
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        role_id = _snowflake(str(args.get("roleId") or ""))

        matched = [
            m for m in await _all_members(self._guild)
            if m.joined_at is not None and m.joined_at >= cutoff
        ]
        if role_id is not None:
            matched = [m for m in matched if m.get_role(role_id) is not None]
        return {
            "after": after,
            "roleId": str(role_id) if role_id is not None else None,
            "count": len(matched),
            "sampleMembers": [
                {"id": str(m.id), "username": m.name, "joinedAt": _iso(m.joined_at)}
                for m in matched[:5]
            ],
        }


class ListRolesTool(_GuildTool):
    name = "listRoles"
    description = (
        "List all roles in the server, sorted by position. Use this to understand the role "
        "hierarchy."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "limit": {
                "type": "integer",
                "minimum": 1,
                "maximum": 50,
                "description": "Maximum number of roles to return (default: 25)",
            },
        },
        "required": [],
    }

    async def inspect(self, args: Dict[str, Any]) -> Any:
        limit = _clamp(args.get("limit"), 25, 1, 50)
        ordered = sorted(self._guild.roles, key=lambda r: r.position, reverse=True)
        return [
            {
                "id": str(r.id),
                "name": r.name,
                "color": str(r.color),
                "memberCount": len(r.members),
                "position": r.position,
            }
            for r in ordered[:limit]
        ]


class SearchUsersTool(_GuildTool):
    name = "searchUsers"
    description = "Search for users/members by username or display name. Returns matching members."
    input_schema = {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Username or display name pattern to search for"},
            "limit": {
                "type": "integer",
                "minimum": 1,
                "maximum": 25,
                "description": "Maximum number of results (default: 10)",
            },
        },
        "required": ["pattern"],
    }

    async def inspect(self, args: Dict[str, Any]) -> Any:
        pattern = str(args.get("pattern") or "").lower()
        limit = _clamp(args.get("limit"), 10, 1, 25)
        matched = [
            m for m in await _all_members(self._guild)
            if pattern in m.name.lower() or pattern in m.display_name.lower()
        ]
        results = []
        for member in matched[:limit]:
            summary = _member_summary(member)
            summary["roleCount"] = len(member.roles)
            results.append(summary)
        return results


GUILD_TOOL_TYPES = (
    SearchRolesTool,
    SearchChannelsTool,
    GetRoleInfoTool,
    GetChannelInfoTool,
    GetRoleMembersTool,
    CountMembersByJoinDateTool,
    ListRolesTool,
    SearchUsersTool,
)


def build_guild_tool_registry(guild: discord.Guild) -> ToolRegistry:
    registry = ToolRegistry()
    for tool_type in GUILD_TOOL_TYPES:
        registry.register(tool_type(guild))
    return registry
