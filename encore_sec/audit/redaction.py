"""
Secret redaction for audit details
Strip credential-bearing fields and inline tokens before a record is persisted
"""

import re
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple

import structlog

from ..constants import AuditDefaults

logger = structlog.get_logger(__name__)

# Normalised key fragments; a key containing any of these is secret-bearing.
SECRET_KEY_FRAGMENTS: FrozenSet[str] = frozenset({
    "password", "passwd", "passphrase", "token", "secret", "apikey",
    "authorization", "credential", "cookie", "session", "jwt",
    "privatekey", "signature",
})

# Short names only redacted on an exact match ("pin" would otherwise hit "shipping").
SECRET_KEY_EXACT: FrozenSet[str] = frozenset({
    "pwd", "pass", "auth", "otp", "pin", "key", "cvv", "ssn",
})


class TextPattern:
    """Inline secret pattern masked inside free-text values"""

    def __init__(self, name: str, pattern: str, replacement: str):
        self.name = name
        self.pattern = re.compile(pattern, re.IGNORECASE)
        self.replacement = replacement

    def sub(self, text: str) -> Tuple[str, int]:
        return self.pattern.subn(self.replacement, text)


DEFAULT_TEXT_PATTERNS: Tuple[TextPattern, ...] = (
    TextPattern(
        "bearer",
        r"\bbearer\s+[A-Za-z0-9\-._~+/]+=*",
        f"Bearer {AuditDefaults.REDACTED}",
    ),
    TextPattern(
        "jwt",
        r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*",
        AuditDefaults.REDACTED,
    ),
)


def normalise_key(key: Any) -> str:
    """Lower-case and drop separators: 'API-Key', 'api_key' and 'apiKey' compare equal"""
    return re.sub(r"[^a-z0-9]", "", str(key).lower())


class SecretRedactor:
    """
    Recursive redaction engine for JSON-shaped payloads.

    Values under secret-bearing keys are replaced wholesale; strings
    elsewhere have inline bearer tokens and JWTs masked. Inputs are never
    mutated.
    """

    def __init__(self, extra_keys: Optional[Iterable[str]] = None,
                 text_patterns: Tuple[TextPattern, ...] = DEFAULT_TEXT_PATTERNS,
                 placeholder: str = AuditDefaults.REDACTED):
        self.extra_keys = frozenset(normalise_key(k) for k in (extra_keys or ()))
        self.text_patterns = text_patterns
        self.placeholder = placeholder

    def is_secret_key(self, key: Any) -> bool:
        normalised = normalise_key(key)
        if not normalised:
            return False
        if normalised in SECRET_KEY_EXACT or normalised in self.extra_keys:
            return True
        return any(fragment in normalised for fragment in SECRET_KEY_FRAGMENTS)

    def redact_text(self, text: str) -> Tuple[str, int]:
        total = 0
        for pattern in self.text_patterns:
            text, count = pattern.sub(text)
            total += count
        return text, total

    def redact(self, value: Any) -> Tuple[Any, List[str]]:
        """Return (redacted copy, paths that were redacted)"""
        redacted_paths: List[str] = []
        result = self._walk(value, "$", redacted_paths)
        return result, redacted_paths

    def _walk(self, value: Any, path: str, redacted_paths: List[str]) -> Any:
        if isinstance(value, dict):
            cleaned = {}
            for key, item in value.items():
                item_path = f"{path}.{key}"
                if self.is_secret_key(key):
                    cleaned[key] = self.placeholder
                    redacted_paths.append(item_path)
                else:
                    cleaned[key] = self._walk(item, item_path, redacted_paths)
            return cleaned

        if isinstance(value, (list, tuple)):
            return [self._walk(item, f"{path}[{i}]", redacted_paths)
                    for i, item in enumerate(value)]

        if isinstance(value, str):
            text, count = self.redact_text(value)
            if count:
                redacted_paths.append(path)
            return text

        return value


_redactor: Optional[SecretRedactor] = None


def get_secret_redactor() -> SecretRedactor:
    """Get global redactor instance"""
    global _redactor
    if _redactor is None:
        _redactor = SecretRedactor()
    return _redactor


def redact_secrets(value: Any) -> Any:
    """Convenience function to redact a details payload"""
    redacted, paths = get_secret_redactor().redact(value)
    if paths:
        logger.debug("Redacted audit details", fields=len(paths))
    return redacted
