from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import signal
import sys
import tempfile
import time
from typing import Any, Dict, List, Optional, Sequence

from wack_hacker.code_mode.errors import SandboxRuntimeFailure, SandboxStartupFailure, SandboxTimeout
from wack_hacker.code_mode.models import ExecutionResult
from wack_hacker.execution.script_template import EVENT_ERROR, EVENT_LOG, EVENT_RESULT
from wack_hacker.observability.structured_log import log_json
from wack_hacker.util import redact, tail_lines

logger = logging.getLogger(__name__)

EXECUTION_TIMEOUT_SEC = 5 * 60
# Time a child gets to close its gateway connection after posting a result.
EXIT_GRACE_SEC = 5.0
STDOUT_LINE_LIMIT = 4 * 1024 * 1024
STDERR_TAIL_LINES = 12
_PASSTHROUGH_ENV = ("PATH", "PYTHONPATH", "VIRTUAL_ENV", "LANG", "LC_ALL", "SYSTEMROOT", "SSL_CERT_FILE")


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


class _IsolateSession:
    """One child interpreter: feeds the program, drains its streams, kills it."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self.proc = proc
        self.logs: List[str] = []
        self.errors: List[str] = []
        self.result: Optional[Dict[str, Any]] = None
        self._stderr: List[str] = []
        self._stderr_task: Optional[asyncio.Task] = None

    async def run(self, script: str) -> Dict[str, Any]:
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        await self._feed(script)
        assert self.proc.stdout is not None
        while True:
            try:
                raw = await self.proc.stdout.readline()
            except ValueError as exc:
                raise SandboxRuntimeFailure(f"Sandbox output line exceeded the size limit: {exc}") from exc
            if not raw:
                break
            self._handle_line(raw.decode("utf-8", errors="replace").rstrip("\n"))
            if self.result is not None:
                return self.result
        returncode = await self.proc.wait()
        await self._stderr_done(wait_sec=2.0)
        detail = "\n".join(tail_lines(redact("\n".join(self._stderr)), STDERR_TAIL_LINES))
        message = f"Sandbox exited with code {returncode} before reporting a result."
        if detail:
            message = f"{message}\n{detail}"
        raise SandboxRuntimeFailure(message)

    async def terminate(self, grace_sec: float = 0.0) -> None:
        """Idempotent: safe when the child already exited."""
        if self.proc.returncode is None and grace_sec > 0:
            try:
                await asyncio.wait_for(self.proc.wait(), timeout=grace_sec)
            except asyncio.TimeoutError:
                pass
        if self.proc.returncode is None:
            self._kill_group()
            await self.proc.wait()
        await self._stderr_done()
        if self.proc.stdin is not None and not self.proc.stdin.is_closing():
            self.proc.stdin.close()

    async def _feed(self, script: str) -> None:
        assert self.proc.stdin is not None
        try:
            self.proc.stdin.write(script.encode("utf-8"))
            await self.proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.debug("sandbox stdin closed early: %s", exc)
        finally:
            self.proc.stdin.close()

    def _handle_line(self, line: str) -> None:
        try:
            payload = json.loads(line)
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or "event" not in payload:
            # stray print() output
            if line.strip():
                self.logs.append(line)
            return
        event = payload.get("event")
        if event == EVENT_LOG:
            self.logs.append(str(payload.get("text") or ""))
        elif event == EVENT_ERROR:
            self.errors.append(str(payload.get("text") or ""))
        elif event == EVENT_RESULT:
            self.result = payload

    async def _drain_stderr(self) -> None:
        if self.proc.stderr is None:
            return
        while True:
            raw = await self.proc.stderr.readline()
            if not raw:
                return
            self._stderr.append(raw.decode("utf-8", errors="replace").rstrip("\n"))
            del self._stderr[:-200]

    async def _stderr_done(self, wait_sec: float = 0.0) -> None:
        task = self._stderr_task
        if task is None:
            return
        if wait_sec > 0 and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=wait_sec)
            except asyncio.TimeoutError:
                pass
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except (OSError, ValueError) as exc:
            logger.debug("sandbox stderr drain stopped: %s", exc)

    def _kill_group(self) -> None:
        try:
            os.killpg(self.proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except (AttributeError, PermissionError, OSError):
            # Fallback to direct process signaling if pgid kill fails.
            try:
                self.proc.kill()
            except ProcessLookupError:
                return


class SandboxExecutor:
    """Runs a built program in a child interpreter under a wall-clock watchdog.

    Exactly one ``ExecutionResult`` is produced per call: whatever the
    program posted, an ``error`` when the isolate fails to start or dies
    without reporting, or a ``timeout`` carrying the log lines streamed
    before the child was killed. The child is always gone when this returns.
    """

    def __init__(
        self,
        timeout_sec: float = EXECUTION_TIMEOUT_SEC,
        python_executable: str = "",
        exit_grace_sec: float = EXIT_GRACE_SEC,
        extra_args: Sequence[str] = (),
    ) -> None:
        self._timeout_sec = max(0.01, float(timeout_sec))
        self._python = python_executable or sys.executable
        self._exit_grace_sec = max(0.0, float(exit_grace_sec))
        self._extra_args = list(extra_args)

    @property
    def timeout_sec(self) -> float:
        return self._timeout_sec

    async def execute(self, script: str, correlation_id: str = "") -> ExecutionResult:
        started = time.monotonic()
        log_json(
            logger, "code_mode.sandbox.start",
            run_id=correlation_id, script_length=len(script),
            script_lines=len(script.splitlines()), timeout_sec=self._timeout_sec,
        )
        workdir = tempfile.mkdtemp(prefix="code-mode-")
        try:
            result = await self._execute_in(workdir, script, started)
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

        log_json(
            logger, "code_mode.sandbox.completed",
            run_id=correlation_id, result_type=result.type, log_count=len(result.logs),
            error_count=len(result.errors), duration_ms=int(result.duration_ms),
            error=result.error,
        )
        return result

    async def _execute_in(self, workdir: str, script: str, started: float) -> ExecutionResult:
        try:
            session = _IsolateSession(await self._spawn(workdir))
        except SandboxStartupFailure as exc:
            return ExecutionResult.failure(str(exc), duration_ms=_elapsed_ms(started))

        grace = 0.0
        try:
            try:
                payload = await self._watch(session, script)
            except SandboxTimeout:
                return ExecutionResult.timed_out(
                    duration_ms=_elapsed_ms(started),
                    logs=tuple(session.logs),
                    errors=tuple(session.errors),
                )
            except SandboxRuntimeFailure as exc:
                return ExecutionResult.failure(
                    str(exc),
                    duration_ms=_elapsed_ms(started),
                    logs=tuple(session.logs),
                    errors=tuple(session.errors),
                )
            grace = self._exit_grace_sec
            return ExecutionResult.from_payload(payload, fallback_duration_ms=_elapsed_ms(started))
        finally:
            await session.terminate(grace_sec=grace)

    async def _watch(self, session: _IsolateSession, script: str) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(session.run(script), timeout=self._timeout_sec)
        except asyncio.TimeoutError as exc:
            raise SandboxTimeout(f"no result within {self._timeout_sec:g}s") from exc

    async def _spawn(self, workdir: str) -> asyncio.subprocess.Process:
        argv = [self._python, "-u", *self._extra_args, "-"]
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
                env=self._child_env(workdir),
                start_new_session=True,
                limit=STDOUT_LINE_LIMIT,
            )
        except (OSError, ValueError) as exc:
            raise SandboxStartupFailure(f"Failed to start sandbox: {exc}", cause=exc) from exc

    def _child_env(self, workdir: str) -> Dict[str, str]:
        env = {key: os.environ[key] for key in _PASSTHROUGH_ENV if os.environ.get(key)}
        env.update({
            "HOME": workdir,
            "TMPDIR": workdir,
            "PYTHONIOENCODING": "utf-8",
            "PYTHONUNBUFFERED": "1",
            "PYTHONDONTWRITEBYTECODE": "1",
        })
        return env
