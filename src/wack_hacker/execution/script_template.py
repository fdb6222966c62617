"""Builds the self-contained program that runs a validated snippet.

Pure text transformation: the snippet becomes the body of ``main()`` inside
a discord.py program that logs in, resolves the request's guild, channel,
message and author, runs the body once the gateway is ready, reports a
single structured result on stdout and always closes its connection.

Host/isolate protocol (one JSON object per stdout line):
  {"event": "log", "text": ...}      streamed as ``log()`` is called
  {"event": "error", "text": ...}    streamed as ``log_error()`` is called
  {"event": "result", "type": "success" | "error", "logs": [...],
   "errors": [...], "duration_ms": ..., "error": ..., "stack": ...}
"""
from __future__ import annotations

from dataclasses import dataclass

from wack_hacker.code_mode.validator import indent_body

EVENT_LOG = "log"
EVENT_ERROR = "error"
EVENT_RESULT = "result"


@dataclass(frozen=True)
class ScriptContext:
    bot_token: str
    guild_id: int
    channel_id: int
    message_id: int
    author_id: int

    def __repr__(self) -> str:
        return (
            f"ScriptContext(guild_id={self.guild_id}, channel_id={self.channel_id}, "
            f"message_id={self.message_id}, author_id={self.author_id}, bot_token='***')"
        )


_PRELUDE = '''import asyncio
import json
import sys
import time
import traceback
from datetime import datetime, timedelta, timezone

import discord

GUILD_ID = {guild_id}
CHANNEL_ID = {channel_id}
MESSAGE_ID = {message_id}
AUTHOR_ID = {author_id}
BOT_TOKEN = {bot_token}

logs = []
errors = []


def _emit(payload):
    sys.stdout.write(json.dumps(payload, default=str) + "\\n")
    sys.stdout.flush()


def _format(args):
    parts = []
    for arg in args:
        if arg is None:
            parts.append("None")
        elif isinstance(arg, (dict, list, tuple)):
            try:
                parts.append(json.dumps(arg, indent=2, default=str))
            except (TypeError, ValueError):
                parts.append(str(arg))
        else:
            parts.append(str(arg))
    return " ".join(parts)


def _stamp():
    return datetime.now(timezone.utc).strftime("%H:%M:%S")


def log(*args):
    line = "[" + _stamp() + "] " + _format(args)
    logs.append(line)
    _emit({{"event": "{event_log}", "text": line}})


def log_error(*args):
    line = "[" + _stamp() + "] " + _format(args)
    errors.append(line)
    _emit({{"event": "{event_error}", "text": line}})


async def sleep(seconds):
    await asyncio.sleep(seconds)


intents = discord.Intents.default()
intents.members = True
intents.message_content = True
intents.presences = True
intents.moderation = True
client = discord.Client(intents=intents)


async def main():
    guild = client.get_guild(GUILD_ID) or await client.fetch_guild(GUILD_ID)
    channel = guild.get_channel(CHANNEL_ID) or await guild.fetch_channel(CHANNEL_ID)
    message = await channel.fetch_message(MESSAGE_ID)
    author = await client.fetch_user(AUTHOR_ID)

    log("Code execution started")
    log(f"Guild: {{guild.name}} ({{guild.id}})")
    log(f"Channel: #{{channel.name}}")
    log(f"Triggered by: {{author}}")
    log("---")

'''

_EPILOGUE = '''

_started = False


@client.event
async def on_ready():
    global _started
    if _started:
        return
    _started = True
    started_at = time.monotonic()
    try:
        await main()
        _emit({{
            "event": "{event_result}",
            "type": "success",
            "logs": logs,
            "errors": errors,
            "duration_ms": (time.monotonic() - started_at) * 1000,
        }})
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        stack = traceback.format_exc()
        log_error(message)
        log_error(stack)
        _emit({{
            "event": "{event_result}",
            "type": "error",
            "error": message,
            "stack": stack,
            "logs": logs,
            "errors": errors,
            "duration_ms": (time.monotonic() - started_at) * 1000,
        }})
    finally:
        try:
            await client.close()
        except Exception:
            pass


client.run(BOT_TOKEN, log_handler=None)
'''


def build_executable_script(snippet: str, context: ScriptContext) -> str:
    prelude = _PRELUDE.format(
        guild_id=int(context.guild_id),
        channel_id=int(context.channel_id),
        message_id=int(context.message_id),
        author_id=int(context.author_id),
        bot_token=repr(str(context.bot_token)),
        event_log=EVENT_LOG,
        event_error=EVENT_ERROR,
    )
    body = indent_body(snippet)
    if not body.strip():
        body = "    pass"
    return prelude + body + _EPILOGUE.format(event_result=EVENT_RESULT)
