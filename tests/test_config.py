import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from wack_hacker.config import (
    DEFAULT_CATEGORIES,
    DEFAULT_CLASSIFIER_MODEL,
    load_code_mode_settings,
    load_config,
    parse_id_list,
)


class TestCodeModeSettings(unittest.TestCase):
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_code_mode_settings({})
        self.assertEqual(settings.categories, DEFAULT_CATEGORIES)
        self.assertEqual(settings.max_steps, 8)
        self.assertEqual(settings.approval_timeout_sec, 300)
        self.assertEqual(settings.execution_timeout_sec, 300)
        self.assertEqual(settings.summary_model, DEFAULT_CLASSIFIER_MODEL)

    def test_env_file_values_and_process_env_precedence(self):
        env_file = {
            "CODE_MODE_CATEGORIES": "1, 2,x,3",
            "CODE_MODE_MAX_STEPS": "4",
            "CODE_MODE_CLASSIFIER_MODEL": "claude-small",
        }
        with patch.dict(os.environ, {"CODE_MODE_MAX_STEPS": "6"}, clear=True):
            settings = load_code_mode_settings(env_file)
        self.assertEqual(settings.categories, (1, 2, 3))
        self.assertEqual(settings.max_steps, 6)
        self.assertEqual(settings.summary_model, "claude-small")

    def test_invalid_and_non_positive_integers(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_code_mode_settings({
                "CODE_MODE_APPROVAL_TIMEOUT_SEC": "soon",
                "CODE_MODE_EXECUTION_TIMEOUT_SEC": "-5",
            })
        self.assertEqual(settings.approval_timeout_sec, 300)
        self.assertEqual(settings.execution_timeout_sec, 1)

    def test_parse_id_list(self):
        self.assertIsNone(parse_id_list(""))
        self.assertIsNone(parse_id_list("a,b"))
        self.assertEqual(parse_id_list("10,20"), [10, 20])


class TestLoadConfig(unittest.TestCase):
    def test_reads_env_file_and_defaults_sandbox_token(self):
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, ".env").write_text(
                "DISCORD_BOT_TOKEN=\"bot-token\"\nANTHROPIC_API_KEY=sk-ant-abc\n# comment\n",
                encoding="utf-8",
            )
            with patch.dict(os.environ, {}, clear=True):
                config = load_config(Path(tmp))
        self.assertEqual(config.token, "bot-token")
        self.assertEqual(config.anthropic_api_key, "sk-ant-abc")
        self.assertEqual(config.sandbox_token, "bot-token")
        self.assertEqual(config.env_path, Path(tmp) / ".env")

    def test_separate_sandbox_token(self):
        with tempfile.TemporaryDirectory() as tmp:
            env = {"DISCORD_BOT_TOKEN": "bot-token", "CODE_MODE_SANDBOX_TOKEN": "limited-token"}
            with patch.dict(os.environ, env, clear=True):
                config = load_config(Path(tmp))
        self.assertEqual(config.sandbox_token, "limited-token")

    def test_missing_token_exits(self):
        with tempfile.TemporaryDirectory() as tmp:
            with patch.dict(os.environ, {}, clear=True), \
                    patch("wack_hacker.config.load_env_with_fallback", return_value={}):
                with self.assertRaises(SystemExit) as ctx:
                    load_config(Path(tmp))
        self.assertEqual(ctx.exception.code, 1)


if __name__ == "__main__":
    unittest.main()
