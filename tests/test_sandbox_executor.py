import os
import shutil
import sys
import tempfile
import textwrap
import time
import unittest
from unittest import mock

from wack_hacker.code_mode.models import RESULT_ERROR, RESULT_SUCCESS, RESULT_TIMEOUT
from wack_hacker.execution.sandbox import SandboxExecutor
from wack_hacker.execution.script_template import ScriptContext, build_executable_script


def _program(body: str) -> str:
    header = textwrap.dedent(
        """
        import json
        import os
        import sys
        import time


        def emit(**payload):
            sys.stdout.write(json.dumps(payload) + "\\n")
            sys.stdout.flush()
        """
    )
    return header + textwrap.dedent(body)


class TestSandboxExecutor(unittest.IsolatedAsyncioTestCase):
    def _executor(self, timeout_sec: float = 10.0) -> SandboxExecutor:
        return SandboxExecutor(timeout_sec=timeout_sec, python_executable=sys.executable, exit_grace_sec=0.5)

    async def test_success_payload_is_returned(self):
        script = _program(
            """
            emit(event="log", text="Channel: #hack-night")
            emit(event="result", type="success", logs=["Channel: #hack-night"], errors=[], duration_ms=12.5)
            """
        )
        result = await self._executor().execute(script, correlation_id="t-success")
        self.assertEqual(result.type, RESULT_SUCCESS)
        self.assertEqual(result.logs, ("Channel: #hack-night",))
        self.assertEqual(result.errors, ())
        self.assertEqual(result.duration_ms, 12.5)

    async def test_error_after_three_logs(self):
        script = _program(
            """
            logs = []
            for i in range(3):
                logs.append(f"step {i}")
                emit(event="log", text=f"step {i}")
            emit(event="error", text="boom")
            emit(event="result", type="error", error="boom", stack="Traceback...",
                 logs=logs, errors=["boom"], duration_ms=3.0)
            """
        )
        result = await self._executor().execute(script)
        self.assertEqual(result.type, RESULT_ERROR)
        self.assertEqual(len(result.logs), 3)
        self.assertGreaterEqual(len(result.errors), 1)
        self.assertEqual(result.error, "boom")

    async def test_exit_without_result_keeps_streamed_logs(self):
        script = _program(
            """
            emit(event="log", text="before crash")
            sys.stderr.write("fatal: something broke\\n")
            sys.exit(3)
            """
        )
        result = await self._executor().execute(script)
        self.assertEqual(result.type, RESULT_ERROR)
        self.assertEqual(result.logs, ("before crash",))
        self.assertIn("code 3", result.error)
        self.assertIn("something broke", result.error)

    async def test_timeout_reports_partial_logs(self):
        script = _program(
            """
            emit(event="log", text="one")
            emit(event="log", text="two")
            time.sleep(60)
            """
        )
        started = time.monotonic()
        result = await self._executor(timeout_sec=1.0).execute(script)
        self.assertEqual(result.type, RESULT_TIMEOUT)
        self.assertEqual(result.logs, ("one", "two"))
        self.assertLess(time.monotonic() - started, 15)

    async def test_plain_prints_are_kept_as_logs(self):
        script = _program(
            """
            print("hello from print", flush=True)
            emit(event="result", type="success", logs=[], errors=[], duration_ms=1)
            """
        )
        result = await self._executor().execute(script)
        self.assertEqual(result.type, RESULT_SUCCESS)

    async def test_workdir_is_removed_afterwards(self):
        script = _program(
            """
            cwd = os.getcwd()
            emit(event="result", type="success", logs=[cwd], errors=[], duration_ms=1)
            """
        )
        result = await self._executor().execute(script)
        self.assertEqual(result.type, RESULT_SUCCESS)
        self.assertFalse(os.path.exists(result.logs[0]))

    async def test_child_lingering_after_result_is_killed(self):
        script = _program(
            """
            emit(event="result", type="success", logs=[], errors=[], duration_ms=1)
            time.sleep(60)
            """
        )
        started = time.monotonic()
        result = await self._executor().execute(script)
        self.assertEqual(result.type, RESULT_SUCCESS)
        self.assertLess(time.monotonic() - started, 15)

    async def test_missing_interpreter_is_error_result(self):
        executor = SandboxExecutor(timeout_sec=5, python_executable="/nonexistent/python3")
        result = await executor.execute("print('x')")
        self.assertEqual(result.type, RESULT_ERROR)
        self.assertIn("Failed to start sandbox", result.error)


# Offline stand-in for discord.py: the client fires on_ready as soon as it runs.
_FAKE_DISCORD = textwrap.dedent(
    """
    import asyncio


    class Intents:
        @classmethod
        def default(cls):
            return cls()


    class _Channel:
        def __init__(self, channel_id):
            self.id = channel_id
            self.name = "hack-night"

        async def fetch_message(self, message_id):
            return object()


    class _Guild:
        def __init__(self, guild_id):
            self.id = guild_id
            self.name = "Hack Club"

        def get_channel(self, channel_id):
            return _Channel(channel_id)


    class Client:
        def __init__(self, intents=None):
            self.closed = False

        def event(self, coro):
            setattr(self, coro.__name__, coro)
            return coro

        def get_guild(self, guild_id):
            return _Guild(guild_id)

        async def fetch_user(self, user_id):
            return f"user-{user_id}"

        async def close(self):
            self.closed = True

        def run(self, token, log_handler=None):
            asyncio.run(self.on_ready())
    """
)


class TestBuiltProgramInSandbox(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.stub_dir = tempfile.mkdtemp(prefix="fake-discord-")
        with open(os.path.join(self.stub_dir, "discord.py"), "w", encoding="utf-8") as fh:
            fh.write(_FAKE_DISCORD)
        env_patch = mock.patch.dict(os.environ, {"PYTHONPATH": self.stub_dir})
        env_patch.start()
        self.addCleanup(env_patch.stop)
        self.addCleanup(shutil.rmtree, self.stub_dir, True)
        self.context = ScriptContext(bot_token="token", guild_id=30, channel_id=20, message_id=40, author_id=500)

    async def _run(self, snippet: str):
        script = build_executable_script(snippet, self.context)
        executor = SandboxExecutor(timeout_sec=20.0, python_executable=sys.executable, exit_grace_sec=0.5)
        return await executor.execute(script, correlation_id="t-built")

    async def test_success_result_carries_logs_and_errors(self):
        result = await self._run("log(f'Channel: #{channel.name}')\nlog_error('careful')")
        self.assertEqual(result.type, RESULT_SUCCESS)
        self.assertIn("Code execution started", result.logs[0])
        self.assertTrue(any("Guild: Hack Club (30)" in line for line in result.logs))
        self.assertTrue(result.logs[-1].endswith("Channel: #hack-night"))
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].endswith("careful"))

    async def test_raised_exception_becomes_error_result(self):
        result = await self._run("log('about to fail')\nraise RuntimeError('no such role')")
        self.assertEqual(result.type, RESULT_ERROR)
        self.assertEqual(result.error, "no such role")
        self.assertTrue(result.logs[-1].endswith("about to fail"))
        self.assertGreaterEqual(len(result.errors), 1)


if __name__ == "__main__":
    unittest.main()
