import argparse
import logging
import os
from pathlib import Path

from .config import (
    ANTHROPIC_KEY,
    DEFAULT_CONFIG_DIR,
    SANDBOX_TOKEN_KEY,
    TOKEN_KEY,
    get_env_path,
    get_env_value,
    load_code_mode_settings,
    load_config,
    load_env_with_fallback,
)
from .discord_bot import build_client


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # discord.py's gateway chatter drowns out request logs at DEBUG.
    logging.getLogger("discord").setLevel(max(logging.INFO, logging.getLogger().level))


def _print_config(config_dir: Path) -> None:
    env_file = load_env_with_fallback(config_dir)
    settings = load_code_mode_settings(env_file)

    print(f"Config dir: {config_dir}")
    print(f"Env file: {get_env_path(config_dir)}")
    print(f"Bot token present: {'yes' if get_env_value(TOKEN_KEY, env_file) else 'no'}")
    print(f"Anthropic key present: {'yes' if get_env_value(ANTHROPIC_KEY, env_file) else 'no'}")
    print(f"Separate sandbox token: {'yes' if get_env_value(SANDBOX_TOKEN_KEY, env_file) else 'no'}")
    print(f"Sudo role: {settings.sudo_role_id}")
    print(f"Allowed categories: {', '.join(str(c) for c in settings.categories)}")
    print(f"Models: classifier={settings.classifier_model} generator={settings.generator_model} "
          f"summary={settings.summary_model}")
    print(f"Generator steps: {settings.max_steps}")
    print(f"Approval timeout: {settings.approval_timeout_sec}s")
    print(f"Execution timeout: {settings.execution_timeout_sec}s")


def main() -> None:
    parser = argparse.ArgumentParser(description="Wack Hacker Discord bot")
    parser.add_argument(
        "--config-dir",
        default=str(DEFAULT_CONFIG_DIR),
        help="Directory holding the .env config (default: ~/.config/wack-hacker)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))

    args = parser.parse_args()
    config_dir = Path(args.config_dir).expanduser().resolve()

    _configure_logging(args.log_level)

    if args.print_config:
        _print_config(config_dir)
        return

    config = load_config(config_dir)
    client = build_client(config)
    client.run(config.token, log_handler=None)


if __name__ == "__main__":
    main()
