"""Redaction of credential-shaped text before it reaches any log or console."""

import re
from typing import Any

# Bearer runs before authorization so "authorization: Bearer <tok>" loses the token too.
SECRET_REPLACEMENTS = [
    (re.compile(r"sm_[A-Za-z0-9_]+"), "[REDACTED_API_KEY]"),
    (re.compile(r"bearer\s+[A-Za-z0-9_.\-]+", re.IGNORECASE), "Bearer [REDACTED]"),
    (re.compile(r"api[_-]?key[:\s=]+[\"']?[^\s\"']+[\"']?", re.IGNORECASE), "api_key=[REDACTED]"),
    (re.compile(r"authorization[:\s=]+[\"']?[^\s\"']+[\"']?", re.IGNORECASE), "authorization=[REDACTED]"),
]


def scrub(text: Any) -> Any:
    """Return *text* with secrets replaced. Non-strings pass through unchanged."""
    if not isinstance(text, str):
        return text
    out = text
    for pattern, repl in SECRET_REPLACEMENTS:
        out = pattern.sub(repl, out)
    return out
