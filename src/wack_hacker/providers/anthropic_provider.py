"""Anthropic Claude API provider adapter.

Talks to the Anthropic Messages API over ``httpx``. Code Mode holds one
instance per model (classifier, generator, summarizer); all of them are
stateless request/response calls with no retry or backoff here.

Configuration via environment variables (or explicit constructor args):
  ANTHROPIC_API_KEY      – required
  ANTHROPIC_MODEL        – default: claude-sonnet-4-20250514
  ANTHROPIC_MAX_TOKENS   – default: 4096
  ANTHROPIC_TIMEOUT_SEC  – default: 120
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Sequence

import httpx

from wack_hacker.observability.structured_log import log_json

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = "claude-sonnet-4-20250514"
_DEFAULT_MAX_TOKENS = 4096
_DEFAULT_TIMEOUT_SEC = 120
_API_BASE_URL = "https://api.anthropic.com"
_API_VERSION = "2023-06-01"


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return max(1, int(raw)) if raw else default
    except ValueError:
        return default


class ProviderError(Exception):
    """Raised when the completion endpoint cannot produce a response."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class AnthropicProvider:
    """Anthropic Claude API adapter (buffered generation and native tools)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        timeout_sec: Optional[int] = None,
        base_url: str = _API_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key: str = api_key or os.environ.get("ANTHROPIC_API_KEY") or ""
        self._model: str = model or os.environ.get("ANTHROPIC_MODEL") or _DEFAULT_MODEL
        self._max_tokens: int = max_tokens or _env_int("ANTHROPIC_MAX_TOKENS", _DEFAULT_MAX_TOKENS)
        self._timeout_sec: int = timeout_sec or _env_int("ANTHROPIC_TIMEOUT_SEC", _DEFAULT_TIMEOUT_SEC)
        self._base_url = base_url
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def model(self) -> str:
        return self._model

    async def generate(
        self,
        prompt: str,
        system: str = "",
        correlation_id: str = "",
    ) -> str:
        """Single-turn completion; returns the concatenated text blocks."""
        response = await self.generate_with_tools(
            messages=[{"role": "user", "content": prompt}],
            tools=[],
            system=system,
            correlation_id=correlation_id,
        )
        return _extract_text(response)

    async def generate_with_tools(
        self,
        messages: Sequence[Dict[str, Any]],
        tools: Sequence[Dict[str, Any]],
        system: str = "",
        tool_choice: Optional[Dict[str, Any]] = None,
        correlation_id: str = "",
    ) -> Dict[str, Any]:
        """Call the Messages API with native tool definitions.

        Returns a dict with:
          - "content": list of content blocks (text and tool_use)
          - "stop_reason": "end_turn" | "tool_use" | ...
          - "usage": token usage dict
        """
        if not self._api_key:
            raise ProviderError("ANTHROPIC_API_KEY not configured.")
        payload: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": list(messages),
        }
        if tools:
            payload["tools"] = list(tools)
            if tool_choice:
                payload["tool_choice"] = tool_choice
        if system:
            payload["system"] = system
        log_json(
            logger, "provider.generate.start",
            provider="anthropic", run_id=correlation_id,
            model=self._model, tool_count=len(tools),
        )
        client = self._get_http_client()
        try:
            response = await client.post("/v1/messages", json=payload)
        except httpx.HTTPError as exc:
            log_json(
                logger, "provider.generate.error",
                provider="anthropic", run_id=correlation_id, kind=type(exc).__name__,
            )
            raise ProviderError(f"anthropic API request failed: {exc}") from exc
        if response.status_code >= 400:
            detail = (response.text or "")[:300]
            log_json(
                logger, "provider.generate.error",
                provider="anthropic", run_id=correlation_id, status=response.status_code,
            )
            raise ProviderError(
                f"anthropic API HTTP {response.status_code}. {detail}".strip(),
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("anthropic API returned a non-JSON body.") from exc
        return _normalize_response(data)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": _API_VERSION,
                    "content-type": "application/json",
                },
                timeout=float(self._timeout_sec),
                transport=self._transport,
            )
        return self._http_client


def _normalize_response(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return {"content": [], "stop_reason": "end_turn", "usage": {}}
    content: List[Dict[str, Any]] = []
    for block in data.get("content") or []:
        if not isinstance(block, dict):
            continue
        kind = block.get("type")
        if kind == "text":
            content.append({"type": "text", "text": str(block.get("text") or "")})
        elif kind == "tool_use":
            args = block.get("input")
            content.append({
                "type": "tool_use",
                "id": str(block.get("id") or ""),
                "name": str(block.get("name") or ""),
                "input": args if isinstance(args, dict) else {},
            })
    return {
        "content": content,
        "stop_reason": str(data.get("stop_reason") or "end_turn"),
        "usage": data.get("usage") or {},
    }


def _extract_text(response: Dict[str, Any]) -> str:
    parts = [
        str(block.get("text") or "")
        for block in response.get("content") or []
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "".join(parts)
