from __future__ import annotations

import re
from typing import Any, Dict, Iterable, Mapping

# Replacement for any secret found in logged or stored text.
DEFAULT_PLACEHOLDER = "***"

# "Bearer <token>" as it appears in echoed request headers.
_BEARER_RE = re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-~+/=]+")

# Payload keys whose values never leave the process unredacted.
SENSITIVE_KEYS = frozenset({"apikey", "api_key", "authorization", "card_number", "cvv", "password", "token"})


def redact_text(text: str, secrets: Iterable[str] = (), placeholder: str = DEFAULT_PLACEHOLDER) -> str:
    """
    Replace bearer tokens and each literal secret in `text` with `placeholder`.

    Example:
      "401: bad key sk-123" with secrets=["sk-123"] -> "401: bad key ***"
    """
    if not text:
        return text
    out = _BEARER_RE.sub(lambda m: m.group(1) + placeholder, text)
    for s in secrets:
        if s:
            out = out.replace(s, placeholder)
    return out


def redact_mapping(data: Mapping[str, Any], placeholder: str = DEFAULT_PLACEHOLDER) -> Dict[str, Any]:
    """Shallow copy of `data` with sensitive keys masked, for log lines."""
    out: Dict[str, Any] = {}
    for k, v in data.items():
        out[k] = placeholder if str(k).lower() in SENSITIVE_KEYS else v
    return out


__all__ = [
    "DEFAULT_PLACEHOLDER",
    "SENSITIVE_KEYS",
    "redact_text",
    "redact_mapping",
]
