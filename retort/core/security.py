from __future__ import annotations

import re

# (pattern, replacement) pairs applied in order.
REDACTIONS = (
    (re.compile(r"sk-[A-Za-z0-9_\-]{6,}"), "sk-***"),
    (re.compile(r"AIza[0-9A-Za-z_\-]{10,}"), "AIza***"),
    (re.compile(r"(Bearer\s+)[^\s\"']+"), r"\1***"),
    (re.compile(r"([?&]key=)[^&\s]+"), r"\1***"),
)


def redact_secrets(text: str) -> str:
    """Mask provider API keys in ``text``."""

    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text
