from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

APPROVED = "approved"
CANCELLED = "cancelled"
TIMEOUT = "timeout"
FEEDBACK = "feedback"

RESULT_SUCCESS = "success"
RESULT_ERROR = "error"
RESULT_TIMEOUT = "timeout"


class RequestState(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    VALIDATION_FAILED = "validation_failed"


@dataclass(frozen=True)
class CodeModeRequest:
    author_id: int
    guild_id: int
    channel_id: int
    message_id: int
    text: str


@dataclass(frozen=True)
class GenerationResult:
    code: str
    duration_ms: float
    tool_calls: int


class FeedbackHistory:
    """Append-only feedback transcript owned by a single request."""

    def __init__(self) -> None:
        self._entries: List[str] = []

    def append(self, text: str) -> None:
        self._entries.append(text)

    @property
    def entries(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    def render(self) -> str:
        return "\n".join(f"Feedback {i}: {text}" for i, text in enumerate(self._entries, start=1))

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class Diagnostic:
    line: int
    character: int
    message: str


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: Tuple[Diagnostic, ...] = ()


@dataclass(frozen=True)
class ApprovalOutcome:
    kind: str
    feedback: str = ""
    source_message: Any = None

    @classmethod
    def approved(cls) -> "ApprovalOutcome":
        return cls(kind=APPROVED)

    @classmethod
    def cancelled(cls) -> "ApprovalOutcome":
        return cls(kind=CANCELLED)

    @classmethod
    def timed_out(cls) -> "ApprovalOutcome":
        return cls(kind=TIMEOUT)

    @classmethod
    def with_feedback(cls, text: str, source_message: Any) -> "ApprovalOutcome":
        return cls(kind=FEEDBACK, feedback=text, source_message=source_message)


@dataclass(frozen=True)
class ExecutionResult:
    type: str
    logs: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()
    duration_ms: float = 0.0
    error: Optional[str] = None
    stack: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.type == RESULT_SUCCESS

    @classmethod
    def failure(
        cls,
        message: str,
        duration_ms: float,
        logs: Tuple[str, ...] = (),
        errors: Tuple[str, ...] = (),
        stack: Optional[str] = None,
    ) -> "ExecutionResult":
        return cls(
            type=RESULT_ERROR,
            logs=tuple(logs),
            errors=tuple(errors),
            duration_ms=duration_ms,
            error=message,
            stack=stack,
        )

    @classmethod
    def timed_out(
        cls,
        duration_ms: float,
        logs: Tuple[str, ...] = (),
        errors: Tuple[str, ...] = (),
    ) -> "ExecutionResult":
        return cls(type=RESULT_TIMEOUT, logs=tuple(logs), errors=tuple(errors), duration_ms=duration_ms)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], fallback_duration_ms: float) -> "ExecutionResult":
        """Build a result from the structured message posted by the sandboxed program."""
        kind = str(payload.get("type") or "")
        logs = tuple(str(x) for x in payload.get("logs") or [])
        errors = tuple(str(x) for x in payload.get("errors") or [])
        try:
            duration_ms = float(payload.get("duration_ms"))
        except (TypeError, ValueError):
            duration_ms = fallback_duration_ms
        if kind == RESULT_SUCCESS:
            return cls(type=RESULT_SUCCESS, logs=logs, errors=errors, duration_ms=duration_ms)
        if kind == RESULT_ERROR:
            stack = payload.get("stack")
            return cls.failure(
                message=str(payload.get("error") or "Unknown error"),
                duration_ms=duration_ms,
                logs=logs,
                errors=errors,
                stack=str(stack) if stack else None,
            )
        return cls.failure(
            message=f"Sandbox posted an unknown result type: {kind or '(missing)'}",
            duration_ms=duration_ms,
            logs=logs,
            errors=errors,
        )


@dataclass
class StepNotice:
    """Progress notice emitted by the generator; informational only."""

    kind: str
    text: str
    tool_name: str = ""
    args: Dict[str, Any] = field(default_factory=dict)
