"""Keep the CRM auth token out of log output.

The token travels as a ``token=`` cookie on every upload and stream request,
and httpx error messages or debug output can echo request details.  At
startup the CLI collects every config value whose key matches
``logging.redact_patterns`` and installs :class:`SecretRedactingFilter` on
the root handlers.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Any, Iterable

REDACTED = "[REDACTED]"


class SecretRedactingFilter(logging.Filter):
    """Replace known secret values in a record's message and arguments."""

    def __init__(self, secret_values: Iterable[str] | None = None) -> None:
        super().__init__()
        # single characters would redact half of every message
        self._secrets = sorted(
            {s for s in (secret_values or []) if isinstance(s, str) and len(s) > 1},
            key=len,
            reverse=True,
        )

    @property
    def secrets(self) -> list[str]:
        return list(self._secrets)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        # Render first so secrets inside non-string args (exceptions, dicts) are caught too.
        record.msg = self.redact(record.getMessage())
        record.args = None
        return True

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text


def collect_secret_values(config: Any, patterns: list[str] | None = None) -> list[str]:
    """Return string values in *config* whose key matches a glob in *patterns*.

    Matching is case-insensitive and descends into nested dicts and lists.
    """
    if not patterns:
        return []
    lowered = [p.lower() for p in patterns]
    found: list[str] = []
    stack = [config]
    while stack:
        node = stack.pop()
        if isinstance(node, dict):
            for key, value in node.items():
                if isinstance(value, str) and value and any(
                    fnmatch.fnmatch(str(key).lower(), p) for p in lowered
                ):
                    found.append(value)
                else:
                    stack.append(value)
        elif isinstance(node, (list, tuple)):
            stack.extend(node)
    return found
