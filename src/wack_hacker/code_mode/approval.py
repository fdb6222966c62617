"""Approval round: a button collector raced against a feedback-message listener.

Both branches feed one :class:`ApprovalRace`. The first ``settle`` wins and
runs every registered canceller before returning, so the losing branch is
already unregistered by the time the winner's outcome is observed. Later
settles are no-ops.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, List, Optional, Sequence

import discord

from wack_hacker.code_mode.components import APPROVE_BUTTON_ID, ApprovalView
from wack_hacker.code_mode.errors import ApprovalTransportFailure, PresentationFailure
from wack_hacker.code_mode.models import ApprovalOutcome
from wack_hacker.observability.structured_log import log_json

logger = logging.getLogger(__name__)

APPROVAL_TIMEOUT_SEC = 5 * 60

MessageListener = Callable[[Any], None]
Canceller = Callable[[], Any]


class ApprovalRace:
    """Single-resolution future with synchronous loser cancellation."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self._cancellers: List[Canceller] = []
        self.winner = ""

    @property
    def settled(self) -> bool:
        return self._future.done()

    def on_settle(self, canceller: Canceller) -> None:
        if self.settled:
            self._run(canceller)
            return
        self._cancellers.append(canceller)

    def settle(self, outcome: ApprovalOutcome, source: str = "") -> bool:
        if self.settled:
            logger.debug("approval already settled by %s; dropping %s from %s", self.winner, outcome.kind, source)
            return False
        self.winner = source
        self._future.set_result(outcome)
        self._drain()
        return True

    async def wait(self) -> ApprovalOutcome:
        return await asyncio.shield(self._future)

    def close(self) -> None:
        """Release every listener; an unsettled race is abandoned."""
        if not self.settled:
            self._future.cancel()
        self._drain()

    def _drain(self) -> None:
        cancellers, self._cancellers = self._cancellers, []
        for canceller in cancellers:
            self._run(canceller)

    @staticmethod
    def _run(canceller: Canceller) -> None:
        try:
            canceller()
        except Exception:
            logger.warning("approval listener cleanup failed", exc_info=True)


class MessageTap:
    """Fan-out of raw gateway messages to short-lived listeners."""

    def __init__(self) -> None:
        self._listeners: List[MessageListener] = []

    def subscribe(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, message: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("message listener failed")

    def __len__(self) -> int:
        return len(self._listeners)


def feedback_listener(race: ApprovalRace, thread_id: int, author_id: int) -> MessageListener:
    """Listener that settles ``race`` with the author's next message in the thread."""

    def on_message(message: Any) -> None:
        if getattr(getattr(message, "channel", None), "id", None) != thread_id:
            return
        author = getattr(message, "author", None)
        if getattr(author, "bot", False) or getattr(author, "id", None) != author_id:
            return
        text = (getattr(message, "content", "") or "").strip()
        if not text:
            return
        race.settle(ApprovalOutcome.with_feedback(text, message), source="message")

    return on_message


class ApprovalController:
    def __init__(self, tap: MessageTap, timeout_sec: float = APPROVAL_TIMEOUT_SEC) -> None:
        self._tap = tap
        self._timeout_sec = max(0.01, float(timeout_sec))

    @property
    def timeout_sec(self) -> float:
        return self._timeout_sec

    async def present_and_wait(
        self,
        status_message: Any,
        content: str,
        author_id: int,
        thread_id: int,
        files: Optional[Sequence[discord.File]] = None,
        correlation_id: str = "",
    ) -> ApprovalOutcome:
        started = time.monotonic()
        loop = asyncio.get_running_loop()
        race = ApprovalRace(loop)

        async def on_press(custom_id: str, interaction: discord.Interaction) -> None:
            outcome = ApprovalOutcome.approved() if custom_id == APPROVE_BUTTON_ID else ApprovalOutcome.cancelled()
            if not race.settle(outcome, source="button"):
                return
            try:
                await interaction.response.defer()
            except discord.HTTPException as exc:
                logger.debug("approval interaction ack failed: %s", exc)

        def on_failure(exc: BaseException) -> None:
            failure = ApprovalTransportFailure(f"button collector failed: {exc}", cause=exc)
            logger.warning("%s; treating as timeout", failure)
            race.settle(ApprovalOutcome.timed_out(), source="collector_error")

        view = ApprovalView(author_id, on_press, on_failure=on_failure)
        race.on_settle(view.stop)
        race.on_settle(self._tap.subscribe(feedback_listener(race, thread_id, author_id)))
        timer = loop.call_later(self._timeout_sec, race.settle, ApprovalOutcome.timed_out(), "timer")
        race.on_settle(timer.cancel)

        try:
            try:
                await status_message.edit(content=content, view=view, attachments=list(files or []))
            except discord.HTTPException as exc:
                raise PresentationFailure(f"could not present code for approval: {exc}", cause=exc) from exc
            outcome = await race.wait()
        finally:
            race.close()

        log_json(
            logger, "code_mode.approval.resolved",
            run_id=correlation_id, outcome=outcome.kind, source=race.winner,
            wait_ms=int((time.monotonic() - started) * 1000),
        )
        return outcome
