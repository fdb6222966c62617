import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

TOKEN_KEY = "DISCORD_BOT_TOKEN"
ANTHROPIC_KEY = "ANTHROPIC_API_KEY"
SUDO_ROLE_KEY = "CODE_MODE_SUDO_ROLE_ID"
CATEGORIES_KEY = "CODE_MODE_CATEGORIES"
CLASSIFIER_MODEL_KEY = "CODE_MODE_CLASSIFIER_MODEL"
GENERATOR_MODEL_KEY = "CODE_MODE_GENERATOR_MODEL"
SUMMARY_MODEL_KEY = "CODE_MODE_SUMMARY_MODEL"
MAX_STEPS_KEY = "CODE_MODE_MAX_STEPS"
APPROVAL_TIMEOUT_KEY = "CODE_MODE_APPROVAL_TIMEOUT_SEC"
EXECUTION_TIMEOUT_KEY = "CODE_MODE_EXECUTION_TIMEOUT_SEC"
SANDBOX_PYTHON_KEY = "CODE_MODE_SANDBOX_PYTHON"
SANDBOX_TOKEN_KEY = "CODE_MODE_SANDBOX_TOKEN"

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "wack-hacker"

DEFAULT_SUDO_ROLE_ID = 1093351548387602472
DEFAULT_CATEGORIES: Tuple[int, ...] = (
    809620177347411998,
    1290013838955249734,
    1082077318329143336,
    938975633885782037,
)
DEFAULT_CLASSIFIER_MODEL = "claude-3-5-haiku-latest"
DEFAULT_GENERATOR_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_STEPS = 8
DEFAULT_APPROVAL_TIMEOUT_SEC = 5 * 60
DEFAULT_EXECUTION_TIMEOUT_SEC = 5 * 60


@dataclass(frozen=True)
class CodeModeSettings:
    sudo_role_id: int = DEFAULT_SUDO_ROLE_ID
    categories: Tuple[int, ...] = DEFAULT_CATEGORIES
    classifier_model: str = DEFAULT_CLASSIFIER_MODEL
    generator_model: str = DEFAULT_GENERATOR_MODEL
    summary_model: str = DEFAULT_CLASSIFIER_MODEL
    max_steps: int = DEFAULT_MAX_STEPS
    approval_timeout_sec: float = DEFAULT_APPROVAL_TIMEOUT_SEC
    execution_timeout_sec: float = DEFAULT_EXECUTION_TIMEOUT_SEC
    sandbox_python: str = ""


@dataclass
class Config:
    token: str
    anthropic_api_key: str
    sandbox_token: str
    code_mode: CodeModeSettings
    config_dir: Path
    env_path: Path


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip().strip('"').strip("'")
    except Exception as exc:
        print(f"Failed to read .env: {exc}", file=sys.stderr)
    return data


def get_env_value(key: str, env_file: Dict[str, str]) -> Optional[str]:
    return os.environ.get(key) or env_file.get(key)


def get_env_int(key: str, env_file: Dict[str, str], default: int) -> int:
    raw = (get_env_value(key, env_file) or "").strip()
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        return default


def parse_id_list(raw: Optional[str]) -> Optional[List[int]]:
    if not raw:
        return None
    ids: List[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            continue
    return ids or None


def get_env_path(config_dir: Path) -> Path:
    return config_dir / ".env"


def load_env_with_fallback(config_dir: Path) -> Dict[str, str]:
    env_path = get_env_path(config_dir)
    data = load_env_file(env_path)
    if data:
        return data

    # Legacy fallbacks: project root or current working directory
    legacy_paths = [Path.cwd() / ".env", Path(__file__).resolve().parents[2] / ".env"]
    for legacy in legacy_paths:
        legacy_data = load_env_file(legacy)
        if legacy_data:
            return legacy_data
    return {}


def load_code_mode_settings(env_file: Dict[str, str]) -> CodeModeSettings:
    sudo_role_id = get_env_int(SUDO_ROLE_KEY, env_file, DEFAULT_SUDO_ROLE_ID)
    categories = parse_id_list(get_env_value(CATEGORIES_KEY, env_file))
    classifier_model = (get_env_value(CLASSIFIER_MODEL_KEY, env_file) or DEFAULT_CLASSIFIER_MODEL).strip()
    return CodeModeSettings(
        sudo_role_id=sudo_role_id,
        categories=tuple(categories) if categories else DEFAULT_CATEGORIES,
        classifier_model=classifier_model,
        generator_model=(get_env_value(GENERATOR_MODEL_KEY, env_file) or DEFAULT_GENERATOR_MODEL).strip(),
        summary_model=(get_env_value(SUMMARY_MODEL_KEY, env_file) or classifier_model).strip(),
        max_steps=get_env_int(MAX_STEPS_KEY, env_file, DEFAULT_MAX_STEPS),
        approval_timeout_sec=get_env_int(APPROVAL_TIMEOUT_KEY, env_file, DEFAULT_APPROVAL_TIMEOUT_SEC),
        execution_timeout_sec=get_env_int(EXECUTION_TIMEOUT_KEY, env_file, DEFAULT_EXECUTION_TIMEOUT_SEC),
        sandbox_python=(get_env_value(SANDBOX_PYTHON_KEY, env_file) or "").strip(),
    )


def load_config(config_dir: Path) -> Config:
    env_file = load_env_with_fallback(config_dir)
    token = (get_env_value(TOKEN_KEY, env_file) or "").strip()
    if not token:
        print(f"Missing {TOKEN_KEY}.", file=sys.stderr)
        sys.exit(1)

    anthropic_api_key = (get_env_value(ANTHROPIC_KEY, env_file) or "").strip()
    if not anthropic_api_key:
        print(f"Warning: {ANTHROPIC_KEY} is not set; Code Mode requests will fail.", file=sys.stderr)

    return Config(
        token=token,
        anthropic_api_key=anthropic_api_key,
        sandbox_token=(get_env_value(SANDBOX_TOKEN_KEY, env_file) or token).strip(),
        code_mode=load_code_mode_settings(env_file),
        config_dir=config_dir,
        env_path=get_env_path(config_dir),
    )
