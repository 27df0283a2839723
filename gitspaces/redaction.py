"""Credential masking for logged commands and error diagnostics."""

from __future__ import annotations

import re
from typing import Iterable

TOKEN_PATTERNS = [
    (
        re.compile(r"https://x-access-token:([^@/\s]+)@"),
        "https://x-access-token:***@",
    ),
    (
        re.compile(r"x-access-token:([^@\s]+)@"),
        "x-access-token:***@",
    ),
    (re.compile(r"\bghp_[A-Za-z0-9]{20,}\b"), "ghp_***"),
    (re.compile(r"\bghs_[A-Za-z0-9]{20,}\b"), "ghs_***"),
    (re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}\b"), "github_pat_***"),
]


# Strip ANSI/control characters from git output (progress meters, colors).
_ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~]|\][^\x1B]*(?:\x1B\\\\|\x07))")
# Preserve "\n" and "\t"; normalize "\r" to newlines before stripping.
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_tty_output(value: str) -> str:
    if not value:
        return value
    value = value.replace("\r\n", "\n").replace("\r", "\n")
    value = _ANSI_ESCAPE_RE.sub("", value)
    value = _CONTROL_CHARS_RE.sub("", value)
    return value


def mask_secrets(text: str, secrets: Iterable[str] = ()) -> str:
    """Replace every exact value in ``secrets``; leave everything else untouched."""

    if not text:
        return text
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


def redact_text(text: str, secrets: Iterable[str] = ()) -> str:
    """Mask token-shaped strings plus every exact value in ``secrets``."""

    if not text:
        return text
    redacted = mask_secrets(text, secrets)
    for pat, repl in TOKEN_PATTERNS:
        redacted = pat.sub(repl, redacted)
    return redacted


def redact_args(args: Iterable[str], secrets: Iterable[str] = ()) -> list[str]:
    secrets = [s for s in secrets if s]
    return [redact_text(str(a), secrets) for a in args]


__all__ = ["TOKEN_PATTERNS", "mask_secrets", "redact_args", "redact_text", "sanitize_tty_output"]
