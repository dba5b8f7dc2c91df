from __future__ import annotations


class NotFound(LookupError):
    """Raised when a referenced employee, position, course or record does not exist."""


class Conflict(ValueError):
    """Raised when a write would violate a uniqueness rule (duplicate badge, link, id)."""


__all__ = ["NotFound", "Conflict"]
