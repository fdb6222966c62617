"""Discord-facing presentation for Code Mode: texts, buttons and attachments."""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

import discord

from wack_hacker.code_mode.models import RESULT_ERROR, RESULT_SUCCESS, Diagnostic, ExecutionResult

logger = logging.getLogger(__name__)

APPROVE_BUTTON_ID = "code_mode_approve"
CANCEL_BUTTON_ID = "code_mode_cancel"

GENERATING_TEXT = "Please hold!! I write code ✍️"
EXECUTING_TEXT = "Beeping the boops and running the code... 🤖"
TIMEOUT_ANNOTATION = "**Approval timed out.**"
CANCELLED_ANNOTATION = "**Cancelled by user.**"
REGENERATING_ANNOTATION = "**Regenerating based on your feedback...**"
FAILED_ANNOTATION = "**Something went wrong, this request was stopped.**"

MESSAGE_LIMIT = 2000
# Room kept free in the review message for a later annotation.
ANNOTATION_RESERVE = 80
THREAD_NAME_PREFIX = "Code Mode: "
THREAD_NAME_CHARS = 50
THREAD_AUTO_ARCHIVE_MINUTES = 60

PressHandler = Callable[[str, discord.Interaction], Awaitable[None]]
ErrorHandler = Callable[[BaseException], None]


@dataclass(frozen=True)
class ReviewMessage:
    content: str
    files: List[discord.File]
    truncated: bool


def thread_name(request_text: str) -> str:
    text = " ".join((request_text or "").split())
    if len(text) > THREAD_NAME_CHARS:
        return f"{THREAD_NAME_PREFIX}{text[:THREAD_NAME_CHARS]}..."
    return f"{THREAD_NAME_PREFIX}{text}"


def format_code_block(code: str) -> str:
    return f"```py\n{code}\n```"


def format_generation_header(duration_ms: float, tool_calls: int) -> str:
    noun = "tool call" if tool_calls == 1 else "tool calls"
    return f"-# Generated in {duration_ms / 1000:.2f}s with {tool_calls} {noun}"


def format_review_message(author_id: int, code: str, duration_ms: float, tool_calls: int) -> ReviewMessage:
    """Approval prompt; code that does not fit is cut and attached in full as ``code.py``."""
    head = f"<@{author_id}> Please review this code before I execute it:\n"
    head += format_generation_header(duration_ms, tool_calls) + "\n"
    content = head + format_code_block(code)
    if len(content) <= MESSAGE_LIMIT - ANNOTATION_RESERVE:
        return ReviewMessage(content=content, files=[], truncated=False)

    note = "\n-# Code truncated, full version attached as code.py"
    budget = MESSAGE_LIMIT - ANNOTATION_RESERVE - len(head) - len(format_code_block("")) - len(note) - 4
    shown = code[: max(0, budget)].rstrip() + "\n..."
    files = [_text_file("code.py", code)]
    return ReviewMessage(content=head + format_code_block(shown) + note, files=files, truncated=True)


def annotate(content: str, annotation: str) -> str:
    if not content:
        return annotation
    return f"{content}\n\n{annotation}"


def format_validation_errors(errors: Sequence[Diagnostic]) -> str:
    return "\n".join(f"Line {d.line}:{d.character} - {d.message}" for d in errors)


def format_validation_failure(errors: Sequence[Diagnostic]) -> str:
    body = format_validation_errors(errors)
    text = f"Code generation failed validation:\n```\n{body}\n```"
    if len(text) > MESSAGE_LIMIT:
        cut = MESSAGE_LIMIT - len("Code generation failed validation:\n```\n\n...\n```")
        text = f"Code generation failed validation:\n```\n{body[:cut]}\n...\n```"
    return text


def format_execution_footer(result: ExecutionResult) -> str:
    if result.type == RESULT_SUCCESS:
        status = "successfully"
    elif result.type == RESULT_ERROR:
        status = "with errors"
    else:
        status = "timed out"
    seconds = result.duration_ms / 1000
    return (
        f"-# This task ran {status} in {seconds:.2f} seconds. "
        f"It generated {len(result.logs)} logs and {len(result.errors)} errors."
    )


def format_result_message(author_id: int, summary: str, result: ExecutionResult) -> str:
    footer = format_execution_footer(result)
    head = f"<@{author_id}> "
    budget = MESSAGE_LIMIT - len(head) - len(footer) - 2
    text = summary if len(summary) <= budget else summary[: max(0, budget - 3)] + "..."
    return f"{head}{text}\n\n{footer}"


def _text_file(filename: str, text: str) -> discord.File:
    return discord.File(io.BytesIO(text.encode("utf-8")), filename=filename)


def logs_attachment(logs: Sequence[str]) -> Optional[discord.File]:
    if not logs:
        return None
    return _text_file("logs.txt", "\n".join(logs))


def errors_attachment(errors: Sequence[str]) -> Optional[discord.File]:
    if not errors:
        return None
    return _text_file("errors.txt", "\n".join(errors))


def result_attachments(result: ExecutionResult) -> List[discord.File]:
    return [f for f in (logs_attachment(result.logs), errors_attachment(result.errors)) if f is not None]


class ApprovalView(discord.ui.View):
    """Approve/Cancel buttons for one review round.

    The view never times out on its own; the approval race owns the clock
    and stops the view when any branch settles.
    """

    def __init__(self, author_id: int, on_press: PressHandler, on_failure: Optional[ErrorHandler] = None) -> None:
        super().__init__(timeout=None)
        self.author_id = author_id
        self._on_press = on_press
        self._on_failure = on_failure

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        user = getattr(interaction, "user", None)
        if getattr(user, "id", None) != self.author_id:
            logger.debug("ignoring approval press from user=%s", getattr(user, "id", None))
            return False
        return True

    @discord.ui.button(label="Approve & Execute", style=discord.ButtonStyle.success, custom_id=APPROVE_BUTTON_ID)
    async def approve(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self.press(APPROVE_BUTTON_ID, interaction)

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.danger, custom_id=CANCEL_BUTTON_ID)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self.press(CANCEL_BUTTON_ID, interaction)

    async def press(self, custom_id: str, interaction: discord.Interaction) -> None:
        await self._on_press(custom_id, interaction)

    async def on_error(self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item) -> None:
        logger.warning("approval view error: %s", error)
        if self._on_failure is not None:
            self._on_failure(error)
