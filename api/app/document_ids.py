import re
import secrets
import time
from typing import Optional

_ALLOWED = re.compile(r"^[A-Za-z0-9\-_.]+$")
_RESERVED = ("admin", "api", "system", "null", "undefined")
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def generate_document_sign_id(now_ms: Optional[int] = None) -> str:
    """DOC-<base36 millisecond timestamp><4 random base36 chars>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"DOC-{_base36(now_ms)}{suffix}"


def validate_document_sign_id(value: Optional[str]) -> Optional[str]:
    """Return an error message, or None when the id is acceptable.

    Uniqueness is checked by the caller against the database.
    """
    if not value or not value.strip():
        return "Document Sign ID cannot be empty"
    trimmed = value.strip()
    if len(trimmed) < 3:
        return "Document Sign ID must be at least 3 characters long"
    if len(trimmed) > 50:
        return "Document Sign ID cannot exceed 50 characters"
    if not _ALLOWED.match(trimmed):
        return "Document Sign ID can only contain letters, numbers, hyphens, underscores, and dots"
    lowered = trimmed.lower()
    if any(word in lowered for word in _RESERVED):
        return "Document Sign ID cannot contain reserved words"
    return None
