import json
import unittest
from datetime import datetime, timezone
from types import SimpleNamespace

import discord

from wack_hacker.tools.base import ToolRequest
from wack_hacker.tools.guild import SEARCH_RESULT_LIMIT, build_guild_tool_registry


def _role(role_id: int, name: str, position: int, members=()):
    return SimpleNamespace(
        id=role_id,
        name=name,
        color="#ff0000",
        members=list(members),
        position=position,
        mentionable=False,
        hoist=True,
        managed=False,
        permissions=[("send_messages", True), ("administrator", False)],
    )


def _member(member_id: int, name: str, joined: datetime, roles=()):
    role_ids = {r.id for r in roles}
    return SimpleNamespace(
        id=member_id,
        name=name,
        display_name=name.title(),
        joined_at=joined,
        roles=list(roles),
        get_role=lambda rid: rid if rid in role_ids else None,
    )


def _channel(channel_id: int, name: str, kind: discord.ChannelType, category=None):
    return SimpleNamespace(
        id=channel_id,
        name=name,
        type=kind,
        category_id=category.id if category else None,
        category=category,
        position=1,
    )


class _FakeGuild:
    def __init__(self, roles, channels, members, chunked: bool = True) -> None:
        self.roles = roles
        self.channels = channels
        self.members = members
        self.chunked = chunked

    def get_role(self, role_id):
        return next((r for r in self.roles if r.id == role_id), None)

    def get_channel(self, channel_id):
        return next((c for c in self.channels if c.id == channel_id), None)

    async def fetch_members(self, limit=None):
        for member in self.members:
            yield member


class TestGuildTools(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.events = _channel(10, "Events", discord.ChannelType.category)
        self.organizer = _role(1, "Organizer", position=5)
        old = datetime(2024, 6, 1, tzinfo=timezone.utc)
        new = datetime(2026, 2, 1, tzinfo=timezone.utc)
        self.alice = _member(100, "alice", new, roles=[self.organizer])
        self.bob = _member(101, "bob", old)
        self.carol = _member(102, "carol", new)
        self.organizer.members = [self.alice]
        self.guild = _FakeGuild(
            roles=[self.organizer, _role(2, "Member", position=2), _role(3, "@everyone", position=0)],
            channels=[
                self.events,
                _channel(11, "hack-night", discord.ChannelType.text, self.events),
                _channel(12, "hack-voice", discord.ChannelType.voice, self.events),
                _channel(13, "general", discord.ChannelType.text),
            ],
            members=[self.alice, self.bob, self.carol],
        )
        self.registry = build_guild_tool_registry(self.guild)

    async def _run(self, name: str, **args):
        result = await self.registry.run(ToolRequest(name=name, args=args))
        return result.ok, json.loads(result.output)

    def test_registry_exposes_all_tools(self):
        self.assertEqual(
            self.registry.names(),
            sorted([
                "countMembersByJoinDate", "getChannelInfo", "getRoleInfo", "getRoleMembers",
                "listRoles", "searchChannels", "searchRoles", "searchUsers",
            ]),
        )

    async def test_search_channels_by_pattern(self):
        ok, data = await self._run("searchChannels", pattern="HACK")
        self.assertTrue(ok)
        self.assertEqual([c["name"] for c in data], ["hack-night", "hack-voice"])
        self.assertEqual(data[0]["parentId"], "10")

    async def test_search_channels_type_filter(self):
        _, data = await self._run("searchChannels", pattern="hack", type="voice")
        self.assertEqual([c["id"] for c in data], ["12"])

    async def test_search_results_are_capped(self):
        self.guild.roles = [_role(1000 + i, f"team-{i}", position=i) for i in range(40)]
        _, data = await self._run("searchRoles", pattern="team")
        self.assertEqual(len(data), SEARCH_RESULT_LIMIT)

    async def test_role_info_by_name_and_missing_role(self):
        ok, data = await self._run("getRoleInfo", identifier="organizer")
        self.assertTrue(ok)
        self.assertEqual(data["id"], "1")
        self.assertEqual(data["permissions"], ["send_messages"])
        ok, data = await self._run("getRoleInfo", identifier="nope")
        self.assertFalse(ok)
        self.assertIn("error", data)

    async def test_channel_info_reports_parent(self):
        _, data = await self._run("getChannelInfo", identifier="11")
        self.assertEqual(data["parentName"], "Events")

    async def test_role_members_limit_is_clamped(self):
        _, data = await self._run("getRoleMembers", roleId="1", limit=500)
        self.assertEqual(data["totalMemberCount"], 1)
        self.assertEqual(data["sampleMembers"][0]["username"], "alice")

    async def test_count_members_by_join_date(self):
        _, data = await self._run("countMembersByJoinDate", after="2026-01-01")
        self.assertEqual(data["count"], 2)
        _, data = await self._run("countMembersByJoinDate", after="2026-01-01", roleId="1")
        self.assertEqual(data["count"], 1)

    async def test_count_members_invalid_date(self):
        ok, data = await self._run("countMembersByJoinDate", after="last tuesday")
        self.assertFalse(ok)
        self.assertIn("Invalid date", data["error"])

    async def test_list_roles_sorted_by_position(self):
        _, data = await self._run("listRoles", limit=2)
        self.assertEqual([r["name"] for r in data], ["Organizer", "Member"])

    async def test_search_users_fetches_when_not_chunked(self):
        self.guild.chunked = False
        _, data = await self._run("searchUsers", pattern="CAR")
        self.assertEqual([m["id"] for m in data], ["102"])


if __name__ == "__main__":
    unittest.main()
