"""Syntax-only validation of generated ``main()`` bodies.

The snippet is wrapped in a stub header that pre-declares the names the
real program provides, then compiled without being run. Both parser errors
and compiler-stage syntax errors (such as ``break`` outside a loop) are
reported. Undefined names and type errors are not.

Diagnostic positions are translated back into the snippet's own
coordinates (1-indexed lines and characters), so ``Line 3:7`` points at the
third line of the code the user was shown.
"""
from __future__ import annotations

import logging
import time
from typing import List

from wack_hacker.code_mode.models import Diagnostic, ValidationResult

logger = logging.getLogger(__name__)

VALIDATION_FILENAME = "generated_code.py"
BODY_INDENT = "    "

STUB_HEADER = """from datetime import datetime, timedelta, timezone
from typing import Any
import asyncio
import discord
client: Any = None
guild: Any = None
channel: Any = None
message: Any = None
author: Any = None
def log(*args: Any) -> None: ...
def log_error(*args: Any) -> None: ...
async def sleep(seconds: float) -> None: ...
async def main():
"""

HEADER_LINE_COUNT = len(STUB_HEADER.splitlines())


def indent_body(snippet: str, indent: str = BODY_INDENT) -> str:
    """Indent every line of ``snippet`` so it forms a function body."""
    lines = (snippet or "").split("\n")
    return "\n".join(indent + line if line.strip() else line for line in lines)


def wrap_for_validation(snippet: str) -> str:
    body = indent_body(snippet)
    if not (snippet or "").strip():
        body = ""
    return STUB_HEADER + body + "\n"


def _to_snippet_position(snippet: str, lineno: int, offset: int) -> tuple[int, int]:
    lines = (snippet or "").split("\n")
    line = lineno - HEADER_LINE_COUNT
    line = max(1, min(line, len(lines)))
    text = lines[line - 1]
    character = offset
    if text.strip() and lineno - HEADER_LINE_COUNT == line:
        character = offset - len(BODY_INDENT)
    character = max(1, min(character, len(text) + 1))
    return line, character


def validate_snippet(snippet: str) -> ValidationResult:
    started = time.monotonic()
    errors: List[Diagnostic] = []
    if not (snippet or "").strip():
        errors.append(Diagnostic(line=1, character=1, message="Generated code is empty"))
    else:
        try:
            compile(wrap_for_validation(snippet), VALIDATION_FILENAME, "exec", dont_inherit=True)
        except SyntaxError as exc:
            line, character = _to_snippet_position(snippet, int(exc.lineno or 0), int(exc.offset or 1))
            errors.append(Diagnostic(line=line, character=character, message=str(exc.msg or "invalid syntax")))
        except ValueError as exc:
            # null bytes in source
            errors.append(Diagnostic(line=1, character=1, message=str(exc)))

    result = ValidationResult(valid=not errors, errors=tuple(errors))
    logger.debug(
        "code validation completed valid=%s error_count=%d errors=%s code_lines=%d duration_ms=%d",
        result.valid,
        len(result.errors),
        [f"{d.line}:{d.character} {d.message}" for d in result.errors[:5]],
        len((snippet or "").splitlines()),
        int((time.monotonic() - started) * 1000),
    )
    return result
