from __future__ import annotations

import logging
import time
from typing import Sequence

from wack_hacker.code_mode.errors import SummarizationFailure
from wack_hacker.code_mode.prompts import SUMMARY_SYSTEM_PROMPT, SUMMARY_USER_TEMPLATE
from wack_hacker.domain.contracts import CompletionProvider
from wack_hacker.util import preview

logger = logging.getLogger(__name__)

MAX_SUMMARY_LOG_LINES = 100
MAX_SUMMARY_ERROR_LINES = 20


def build_summary_prompt(
    request_text: str,
    logs: Sequence[str],
    errors: Sequence[str],
    success: bool,
) -> str:
    logs_preview = "\n".join(logs[:MAX_SUMMARY_LOG_LINES])
    errors_preview = "\n".join(errors[:MAX_SUMMARY_ERROR_LINES])
    return SUMMARY_USER_TEMPLATE.format(
        request=request_text,
        status="succeeded" if success else "failed",
        logs=logs_preview or "(no logs)",
        errors=f"Errors:\n{errors_preview}" if errors_preview else "",
    )


class OutcomeSummarizer:
    def __init__(self, provider: CompletionProvider) -> None:
        self._provider = provider

    async def summarize(
        self,
        request_text: str,
        logs: Sequence[str],
        errors: Sequence[str],
        success: bool,
        correlation_id: str = "",
    ) -> str:
        started = time.monotonic()
        prompt = build_summary_prompt(request_text, list(logs), list(errors), success)
        try:
            reply = await self._provider.generate(
                prompt,
                system=SUMMARY_SYSTEM_PROMPT,
                correlation_id=correlation_id,
            )
        except Exception as exc:
            raise SummarizationFailure(f"summary generation failed: {exc}", cause=exc) from exc
        summary = (reply or "").strip()
        logger.debug(
            "summary generated preview=%r summary_length=%d duration_ms=%d",
            preview(request_text),
            len(summary),
            int((time.monotonic() - started) * 1000),
        )
        return summary
