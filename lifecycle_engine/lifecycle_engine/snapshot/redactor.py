"""Key-name based redaction of sensitive attribute values.

Any mapping key that contains one of the configured sensitive terms
(case-insensitive substring match: ``password``, ``secret``, ``key``,
``token``, ``credential``, ``private``) has its value replaced by a fixed
sentinel.  Nested mappings, including mappings inside lists, are walked
recursively.  Redaction is pure and idempotent.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from lifecycle_engine.config import DEFAULT_SENSITIVE_KEYS

REDACTED = "[REDACTED]"


class Redactor:
    """Masks sensitive values in attribute trees.

    Parameters
    ----------
    sensitive_keys:
        Terms matched as case-insensitive substrings of attribute keys.
    sentinel:
        Replacement value for sensitive attributes.
    """

    def __init__(
        self,
        sensitive_keys: Iterable[str] = DEFAULT_SENSITIVE_KEYS,
        sentinel: str = REDACTED,
    ) -> None:
        self._terms = tuple(k.lower() for k in sensitive_keys if k)
        self._sentinel = sentinel

    @property
    def sentinel(self) -> str:
        return self._sentinel

    def is_sensitive(self, key: str) -> bool:
        lowered = key.lower()
        return any(term in lowered for term in self._terms)

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return self.redact(value)
        if isinstance(value, list):
            return [self._redact_value(item) for item in value]
        return value

    def redact(self, attributes: Mapping[str, Any]) -> dict[str, Any]:
        """Return a redacted copy of *attributes*, preserving key order."""
        redacted: dict[str, Any] = {}
        for key, value in attributes.items():
            if self.is_sensitive(str(key)):
                redacted[key] = self._sentinel
            else:
                redacted[key] = self._redact_value(value)
        return redacted


def redact(attributes: Mapping[str, Any]) -> dict[str, Any]:
    """Redact *attributes* with the default sensitive-key set."""
    return Redactor().redact(attributes)
