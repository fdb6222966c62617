import logging
from typing import Optional

import discord

from wack_hacker.code_mode.approval import ApprovalController, MessageTap
from wack_hacker.code_mode.classifier import RequestClassifier
from wack_hacker.code_mode.generator import CodeGenerator
from wack_hacker.code_mode.handler import CodeModeHandler
from wack_hacker.code_mode.summarizer import OutcomeSummarizer
from wack_hacker.config import Config
from wack_hacker.execution.sandbox import SandboxExecutor
from wack_hacker.providers.anthropic_provider import AnthropicProvider

logger = logging.getLogger(__name__)

CLASSIFIER_MAX_TOKENS = 256
GENERATOR_MAX_TOKENS = 4096
SUMMARY_MAX_TOKENS = 512


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.members = True
    intents.message_content = True
    return intents


class CodeModeClient(discord.Client):
    """Gateway client: feeds every message to the approval tap, then to Code Mode."""

    def __init__(self, tap: MessageTap, intents: Optional[discord.Intents] = None) -> None:
        super().__init__(intents=intents or build_intents())
        self.tap = tap
        self.code_mode: Optional[CodeModeHandler] = None
        self._providers = []

    def attach(self, handler: CodeModeHandler, *providers: AnthropicProvider) -> None:
        self.code_mode = handler
        self._providers.extend(providers)

    async def on_ready(self) -> None:
        logger.info("Logged in as %s (id=%s)", self.user, getattr(self.user, "id", None))

    async def on_message(self, message: discord.Message) -> None:
        self.tap.publish(message)
        if self.code_mode is None:
            return
        try:
            await self.code_mode.handle(message)
        except Exception:
            logger.exception("Code Mode failed for message=%s", message.id)

    async def close(self) -> None:
        for provider in self._providers:
            try:
                await provider.aclose()
            except Exception:
                logger.warning("provider close failed", exc_info=True)
        await super().close()


def build_client(config: Config) -> CodeModeClient:
    settings = config.code_mode
    tap = MessageTap()
    client = CodeModeClient(tap)

    classifier_provider = AnthropicProvider(
        api_key=config.anthropic_api_key,
        model=settings.classifier_model,
        max_tokens=CLASSIFIER_MAX_TOKENS,
    )
    generator_provider = AnthropicProvider(
        api_key=config.anthropic_api_key,
        model=settings.generator_model,
        max_tokens=GENERATOR_MAX_TOKENS,
    )
    summary_provider = AnthropicProvider(
        api_key=config.anthropic_api_key,
        model=settings.summary_model,
        max_tokens=SUMMARY_MAX_TOKENS,
    )

    handler = CodeModeHandler(
        client=client,
        settings=settings,
        classifier=RequestClassifier(classifier_provider),
        generator=CodeGenerator(generator_provider, max_steps=settings.max_steps),
        approval=ApprovalController(tap, timeout_sec=settings.approval_timeout_sec),
        executor=SandboxExecutor(
            timeout_sec=settings.execution_timeout_sec,
            python_executable=settings.sandbox_python,
        ),
        summarizer=OutcomeSummarizer(summary_provider),
        sandbox_token=config.sandbox_token,
    )
    client.attach(handler, classifier_provider, generator_provider, summary_provider)
    return client
