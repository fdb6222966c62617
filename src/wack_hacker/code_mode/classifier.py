from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass

from wack_hacker.code_mode.errors import ClassificationFailure
from wack_hacker.code_mode.prompts import CLASSIFIER_SYSTEM_PROMPT, CLASSIFIER_USER_TEMPLATE
from wack_hacker.domain.contracts import CompletionProvider
from wack_hacker.util import preview

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.7
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class ClassifierVerdict:
    is_code_request: bool
    confidence: float
    reason: str


def parse_verdict(text: str) -> ClassifierVerdict:
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        raise ValueError("No JSON found in response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Classifier response is not an object")
    is_code = data.get("isCodeRequest")
    confidence = data.get("confidence")
    reason = data.get("reason")
    if not isinstance(is_code, bool):
        raise ValueError("isCodeRequest must be a boolean")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ValueError("confidence must be a number")
    if not 0 <= confidence <= 1:
        raise ValueError(f"confidence out of range: {confidence}")
    if not isinstance(reason, str):
        raise ValueError("reason must be a string")
    return ClassifierVerdict(is_code_request=is_code, confidence=float(confidence), reason=reason)


class RequestClassifier:
    """Binary intent decision: is this message asking for code to be run?"""

    def __init__(self, provider: CompletionProvider, threshold: float = CONFIDENCE_THRESHOLD) -> None:
        self._provider = provider
        self._threshold = threshold

    async def classify(self, text: str, correlation_id: str = "") -> bool:
        started = time.monotonic()
        try:
            reply = await self._provider.generate(
                CLASSIFIER_USER_TEMPLATE.format(message=text),
                system=CLASSIFIER_SYSTEM_PROMPT,
                correlation_id=correlation_id,
            )
            verdict = parse_verdict(reply)
        except Exception as exc:
            raise ClassificationFailure(f"classifier failed: {exc}", cause=exc) from exc

        logger.debug(
            "classifier result is_code_request=%s confidence=%.2f reason=%s preview=%r duration_ms=%d",
            verdict.is_code_request,
            verdict.confidence,
            verdict.reason,
            preview(text),
            int((time.monotonic() - started) * 1000),
        )
        return verdict.is_code_request and verdict.confidence >= self._threshold
