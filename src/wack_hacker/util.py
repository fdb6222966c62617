import re
from functools import lru_cache
from typing import List

_DEFAULT_PATTERNS = (
    (r"sk-ant-[A-Za-z0-9_-]{10,}", "sk-ant-REDACTED"),
    (r"sk-(?!ant-)[A-Za-z0-9_-]{10,}", "sk-REDACTED"),
    # Discord bot tokens: base64 user id, timestamp, HMAC.
    (r"[MNO][A-Za-z\d_-]{23,25}\.[A-Za-z\d_-]{6}\.[A-Za-z\d_-]{27,}", "DISCORD_TOKEN_REDACTED"),
    (r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*\b", "Bearer REDACTED"),
    (
        r"(?i)\b([A-Z0-9_]*(?:api[_-]?key|token|secret|password))\b\s*[:=]\s*([^\s,;]+)",
        r"\1=REDACTED",
    ),
)


def redact(text: str) -> str:
    value = text or ""
    for regex, replacement in _compiled_patterns():
        value = regex.sub(replacement, value)
    return value


@lru_cache(maxsize=1)
def _compiled_patterns() -> List[tuple[re.Pattern[str], str]]:
    return [(re.compile(pattern), replacement) for pattern, replacement in _DEFAULT_PATTERNS]


def preview(text: str, limit: int = 100) -> str:
    value = text or ""
    return value[:limit]


def truncate(text: str, max_len: int, marker: str = "...") -> str:
    value = text or ""
    if max_len <= 0 or len(value) <= max_len:
        return value
    if max_len <= len(marker):
        return value[:max_len]
    return value[: max_len - len(marker)] + marker


def tail_lines(text: str, count: int) -> List[str]:
    lines = [line for line in (text or "").splitlines() if line.strip()]
    if count <= 0:
        return []
    return lines[-count:]
