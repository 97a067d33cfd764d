"""Redaction helpers: sensitive-text scrubbing for logs and identity anonymisation."""

from __future__ import annotations

import csv
import hashlib
import re
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional, Pattern

_REDACTION_PATTERNS: tuple[tuple[Pattern[str], str], ...] = (
    # PostgreSQL DSN
    (re.compile(r"postgres(ql)?://[^\s)]+", re.IGNORECASE), "[REDACTED]"),
    # libpq keyword DSN password
    (re.compile(r"(password[=:\s]+)[^\s&;,]+", re.IGNORECASE), r"\1[REDACTED]"),
    # GitHub tokens
    (re.compile(r"\b(gh[pousr]_[A-Za-z0-9]{20,})\b"), "[GITHUB_TOKEN]"),
    # URL credentials (user:pass@host), e.g. in a clone remote
    (re.compile(r"(://[^:/\s]+:)[^@\s]+(@)"), r"\1[REDACTED]\2"),
)


def redact_sensitive_text(text: str | None) -> str:
    """Redact DSNs, tokens and URL credentials from text."""
    if not text:
        return ""
    result = str(text)
    for pattern, replacement in _REDACTION_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class IdentityHider:
    """
    Replace identities listed in a hide file with ``anon-<sha1>``.

    The hide file is a CSV whose first column holds sha1 hex digests of the
    values to hide (an optional ``sha1`` header row is skipped). The digest
    memo is shared across worker threads.
    """

    def __init__(self, digests: Optional[Iterable[str]] = None) -> None:
        self._hidden: Dict[str, str] = {}
        for digest in digests or ():
            digest = digest.strip().lower()
            if digest and digest != "sha1":
                self._hidden[digest] = "anon-" + digest
        self._memo: Dict[str, str] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "IdentityHider":
        """Missing file means nothing is hidden."""
        if path is None or not Path(path).exists():
            return cls()
        with open(path, newline="", encoding="utf-8") as f:
            return cls(row[0] for row in csv.reader(f) if row)

    def __len__(self) -> int:
        return len(self._hidden)

    def _digest(self, value: str) -> str:
        with self._lock:
            digest = self._memo.get(value)
        if digest is None:
            digest = hashlib.sha1(value.encode("utf-8")).hexdigest()
            with self._lock:
                self._memo[value] = digest
        return digest

    def __call__(self, value: str) -> str:
        if not value or not self._hidden:
            return value
        return self._hidden.get(self._digest(value), value)


def truncate_bytes(value: str | None, size: int) -> str:
    """Cut ``value`` to at most ``size`` UTF-8 bytes without splitting a character."""
    if not value:
        return ""
    encoded = value.encode("utf-8", errors="replace")
    if len(encoded) <= size:
        return encoded.decode("utf-8")
    return encoded[:size].decode("utf-8", errors="ignore")
