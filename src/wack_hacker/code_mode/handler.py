"""Code Mode orchestration for one qualifying mention.

``CodeModeHandler.handle`` gates the message, classifies it and then drives
the request through generation, validation, approval rounds, sandboxed
execution and summarization inside a dedicated thread. Every terminal path
leaves the latest status message without buttons and with an annotation.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Callable, List, Optional

import discord

from wack_hacker.code_mode.approval import ApprovalController
from wack_hacker.code_mode.classifier import RequestClassifier
from wack_hacker.code_mode.components import (
    CANCELLED_ANNOTATION,
    EXECUTING_TEXT,
    FAILED_ANNOTATION,
    GENERATING_TEXT,
    MESSAGE_LIMIT,
    REGENERATING_ANNOTATION,
    THREAD_AUTO_ARCHIVE_MINUTES,
    TIMEOUT_ANNOTATION,
    annotate,
    format_result_message,
    format_review_message,
    format_validation_failure,
    result_attachments,
    thread_name,
)
from wack_hacker.code_mode.errors import (
    CodeModeError,
    PresentationFailure,
    ThreadCreationFailure,
    ValidationFailure,
)
from wack_hacker.code_mode.generator import CodeGenerator, build_regeneration_request
from wack_hacker.code_mode.models import (
    CANCELLED,
    FEEDBACK,
    TIMEOUT,
    CodeModeRequest,
    FeedbackHistory,
    GenerationResult,
    RequestState,
    StepNotice,
    ValidationResult,
)
from wack_hacker.code_mode.summarizer import OutcomeSummarizer
from wack_hacker.code_mode.validator import validate_snippet
from wack_hacker.config import CodeModeSettings
from wack_hacker.execution.sandbox import SandboxExecutor
from wack_hacker.execution.script_template import ScriptContext, build_executable_script
from wack_hacker.observability.structured_log import log_json
from wack_hacker.tools.base import ToolRegistry
from wack_hacker.tools.guild import build_guild_tool_registry
from wack_hacker.util import preview, truncate

logger = logging.getLogger(__name__)

# Discord drops the typing indicator after ~10 seconds.
TYPING_INTERVAL_SEC = 8.0
FEEDBACK_REACTION = "👍"
PROGRESS_TEXT_MAX_CHARS = 300

RegistryFactory = Callable[[Any], ToolRegistry]
Validator = Callable[[str], ValidationResult]


class TypingHeartbeat:
    """Keeps the typing indicator alive in ``channel`` while the block runs."""

    def __init__(self, channel: Any, interval_sec: float = TYPING_INTERVAL_SEC) -> None:
        self._channel = channel
        self._interval_sec = interval_sec
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> "TypingHeartbeat":
        self._task = asyncio.create_task(self._beat())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.warning("typing heartbeat ended with an error", exc_info=True)
        return False

    async def _beat(self) -> None:
        while True:
            try:
                await self._channel.typing()
            except Exception as exc:
                logger.debug("typing indicator failed: %s", exc)
            await asyncio.sleep(self._interval_sec)


class ProgressLog:
    """Transient thread messages for generator steps, deleted as a batch."""

    def __init__(self, thread: Any) -> None:
        self._thread = thread
        self._messages: List[Any] = []

    def __len__(self) -> int:
        return len(self._messages)

    async def on_step(self, notice: StepNotice) -> None:
        if notice.kind == "tool":
            text = f"-# 🔧 `{truncate(notice.text, PROGRESS_TEXT_MAX_CHARS)}`"
        else:
            text = f"-# 💭 {truncate(notice.text, PROGRESS_TEXT_MAX_CHARS)}"
        self._messages.append(await self._thread.send(text))

    async def clear(self) -> None:
        messages, self._messages = self._messages, []
        if not messages:
            return
        results = await asyncio.gather(*(m.delete() for m in messages), return_exceptions=True)
        failed = [r for r in results if isinstance(r, BaseException)]
        if failed:
            logger.debug("progress cleanup: %d of %d deletions failed: %s", len(failed), len(messages), failed[0])


class StatusMessage:
    """A bot message whose content the handler keeps track of."""

    def __init__(self, message: Any, content: str) -> None:
        self.message = message
        self.content = content

    async def show(self, content: str, **kwargs: Any) -> None:
        try:
            await self.message.edit(content=content, view=None, **kwargs)
        except discord.HTTPException as exc:
            raise PresentationFailure(f"could not update status message: {exc}", cause=exc) from exc
        self.content = content

    async def mark_failed(self, reason: str = "") -> None:
        annotation = FAILED_ANNOTATION
        if reason:
            annotation += f"\n-# {reason}"
        try:
            await self.message.edit(content=annotate(self.content, annotation)[:MESSAGE_LIMIT], view=None)
        except discord.HTTPException as exc:
            logger.warning("could not annotate failed request: %s", exc)


class CodeModeHandler:
    def __init__(
        self,
        client: discord.Client,
        settings: CodeModeSettings,
        classifier: RequestClassifier,
        generator: CodeGenerator,
        approval: ApprovalController,
        executor: SandboxExecutor,
        summarizer: OutcomeSummarizer,
        sandbox_token: str,
        registry_factory: RegistryFactory = build_guild_tool_registry,
        validate: Validator = validate_snippet,
    ) -> None:
        self._client = client
        self._settings = settings
        self._classifier = classifier
        self._generator = generator
        self._approval = approval
        self._executor = executor
        self._summarizer = summarizer
        self._sandbox_token = sandbox_token
        self._registry_factory = registry_factory
        self._validate = validate

    async def handle(self, message: discord.Message) -> Optional[RequestState]:
        """Run Code Mode for ``message``; None when it does not qualify."""
        text = await self.request_text(message)
        if text is None:
            return None
        request = CodeModeRequest(
            author_id=message.author.id,
            guild_id=message.guild.id,
            channel_id=message.channel.id,
            message_id=message.id,
            text=text,
        )
        run_id = f"cm-{message.id}"
        log_json(
            logger, "code_mode.request.received",
            run_id=run_id, author_id=request.author_id, channel_id=request.channel_id,
            request_preview=preview(text), request_length=len(text),
        )

        started = time.monotonic()
        is_code = await self._classifier.classify(text, correlation_id=run_id)
        log_json(logger, "code_mode.classified", run_id=run_id, is_code_request=is_code)
        if not is_code:
            return None

        thread = await self._open_thread(message, text)
        try:
            status_message = await thread.send(GENERATING_TEXT)
        except discord.HTTPException as exc:
            raise PresentationFailure(f"could not post status message: {exc}", cause=exc) from exc

        run = _RequestRun(self, request, message.guild, thread, StatusMessage(status_message, GENERATING_TEXT), run_id)
        try:
            state = await run.drive()
        except Exception as exc:
            log_json(logger, "code_mode.failed", run_id=run_id, error=type(exc).__name__, detail=str(exc))
            await run.mark_failed(exc.user_message if isinstance(exc, CodeModeError) else "")
            raise
        log_json(
            logger, "code_mode.completed",
            run_id=run_id, state=state.value, rounds=run.rounds,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return state

    async def request_text(self, message: discord.Message) -> Optional[str]:
        """Request text with mentions stripped, or None if the message is not a trigger."""
        user = self._client.user
        if message.author.bot:
            return self._skip(message, "bot_author")
        if user is None or not any(m.id == user.id for m in message.mentions):
            return self._skip(message, "no_mention")
        if isinstance(message.channel, discord.Thread):
            return self._skip(message, "in_thread")
        if getattr(message.channel, "category_id", None) not in self._settings.categories:
            return self._skip(message, "category_not_allowed")
        if message.guild is None:
            return self._skip(message, "no_guild")
        if not await self._has_sudo_role(message):
            return self._skip(message, "missing_role")
        text = re.sub(rf"<@!?{user.id}>", "", message.content or "").strip()
        if not text:
            return self._skip(message, "empty_request")
        return text

    async def _has_sudo_role(self, message: discord.Message) -> bool:
        guild = message.guild
        member = guild.get_member(message.author.id)
        if member is None:
            try:
                member = await guild.fetch_member(message.author.id)
            except discord.HTTPException as exc:
                logger.debug("member lookup failed for user=%s: %s", message.author.id, exc)
                return False
        return any(role.id == self._settings.sudo_role_id for role in member.roles)

    def _skip(self, message: discord.Message, reason: str) -> None:
        logger.debug("code mode skipped message=%s reason=%s", getattr(message, "id", None), reason)
        return None

    async def _open_thread(self, message: discord.Message, text: str) -> Any:
        try:
            return await message.create_thread(
                name=thread_name(text),
                auto_archive_duration=THREAD_AUTO_ARCHIVE_MINUTES,
            )
        except discord.HTTPException as exc:
            raise ThreadCreationFailure(f"could not create thread: {exc}", cause=exc) from exc


class _RequestRun:
    """State owned by one request: thread, status messages, feedback history."""

    def __init__(
        self,
        handler: CodeModeHandler,
        request: CodeModeRequest,
        guild: Any,
        thread: Any,
        status: StatusMessage,
        run_id: str,
    ) -> None:
        self.h = handler
        self.request = request
        self.guild = guild
        self.thread = thread
        self.status = status
        self.run_id = run_id
        self.history = FeedbackHistory()
        self.progress = ProgressLog(thread)
        self.registry = handler._registry_factory(guild)
        self.executing: Optional[StatusMessage] = None
        self.rounds = 0

    async def drive(self) -> RequestState:
        generation = await self._generate(self.request.text)
        while True:
            self.rounds += 1
            validation = self.h._validate(generation.code)
            await self.progress.clear()
            if not validation.valid:
                failure = ValidationFailure(validation)
                log_json(
                    logger, "code_mode.validation.failed",
                    run_id=self.run_id, round=self.rounds, error_count=len(validation.errors),
                    detail=str(failure), errors=[f"{d.line}:{d.character} {d.message}" for d in validation.errors],
                )
                await self.status.show(format_validation_failure(validation.errors), attachments=[])
                return RequestState.VALIDATION_FAILED

            review = format_review_message(
                self.request.author_id, generation.code, generation.duration_ms, generation.tool_calls,
            )
            outcome = await self.h._approval.present_and_wait(
                self.status.message,
                review.content,
                author_id=self.request.author_id,
                thread_id=self.thread.id,
                files=review.files,
                correlation_id=self.run_id,
            )
            self.status.content = review.content

            if outcome.kind == TIMEOUT:
                await self.status.show(annotate(review.content, TIMEOUT_ANNOTATION))
                return RequestState.TIMED_OUT
            if outcome.kind == CANCELLED:
                await self.status.show(annotate(review.content, CANCELLED_ANNOTATION))
                return RequestState.CANCELLED
            if outcome.kind == FEEDBACK:
                await self._acknowledge(outcome.source_message)
                await self.status.show(annotate(review.content, REGENERATING_ANNOTATION))
                self.history.append(outcome.feedback)
                log_json(
                    logger, "code_mode.feedback.received",
                    run_id=self.run_id, round=self.rounds, feedback_count=len(self.history),
                    feedback_preview=preview(outcome.feedback),
                )
                generation = await self._generate(
                    build_regeneration_request(self.request.text, generation.code, self.history),
                )
                continue
            await self.status.show(review.content)
            return await self._execute(generation)

    async def _generate(self, prompt: str) -> GenerationResult:
        async with TypingHeartbeat(self.thread):
            return await self.h._generator.generate(
                prompt,
                self.registry,
                on_step=self.progress.on_step,
                correlation_id=self.run_id,
            )

    async def _execute(self, generation: GenerationResult) -> RequestState:
        try:
            executing_message = await self.thread.send(EXECUTING_TEXT)
        except discord.HTTPException as exc:
            raise PresentationFailure(f"could not post executing message: {exc}", cause=exc) from exc
        self.executing = StatusMessage(executing_message, EXECUTING_TEXT)

        script = build_executable_script(
            generation.code,
            ScriptContext(
                bot_token=self.h._sandbox_token,
                guild_id=self.request.guild_id,
                channel_id=self.request.channel_id,
                message_id=self.request.message_id,
                author_id=self.request.author_id,
            ),
        )
        result = await self.h._executor.execute(script, correlation_id=self.run_id)
        summary = await self.h._summarizer.summarize(
            self.request.text,
            result.logs,
            result.errors,
            result.succeeded,
            correlation_id=self.run_id,
        )
        await self.executing.show(
            format_result_message(self.request.author_id, summary, result),
            attachments=result_attachments(result),
        )
        return RequestState.COMPLETED

    async def _acknowledge(self, source_message: Any) -> None:
        if source_message is None:
            return
        try:
            await source_message.add_reaction(FEEDBACK_REACTION)
        except discord.HTTPException as exc:
            logger.debug("feedback reaction failed: %s", exc)

    async def mark_failed(self, reason: str = "") -> None:
        latest = self.executing or self.status
        await latest.mark_failed(reason)
