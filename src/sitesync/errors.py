"""Error kinds shared by the model, sync and probe layers."""

from __future__ import annotations

from typing import Any, Dict, Optional


class SyncError(Exception):
    """Base class for sitesync failures.

    Carries a stable ``code`` so callers (and the HTTP boundary) can branch
    on the kind of failure without string matching.
    """

    code = "UNKNOWN"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(SyncError):
    """Raised when a read targets an id the backing store doesn't have."""

    code = "NOTFOUND"


class TypeMismatchError(SyncError, TypeError):
    """Raised when a containment edge is given a value it cannot promote."""

    code = "TYPE_MISMATCH"


class ConfigurationError(SyncError):
    """Raised when an adapter is used before it is configured."""

    code = "CONFIGURATION"


class ConfigurationLockedError(ConfigurationError):
    """Raised when a store's root path is changed after first use."""

    code = "CONFIGURATION_LOCKED"


class ParseError(SyncError):
    """Raised when persisted content is not valid JSON."""

    code = "PARSE"


class ConflictOnCreateError(SyncError):
    """Raised when a create targets an id that already exists."""

    code = "CONFLICT"


class TransportError(SyncError):
    """Raised for adapter I/O or network failures."""

    code = "TRANSPORT"


class ProbeNotImplementedError(SyncError):
    """Raised when a probe subclass doesn't implement its listing operation."""

    code = "NOT_IMPLEMENTED"


__all__ = [
    "SyncError",
    "NotFoundError",
    "TypeMismatchError",
    "ConfigurationError",
    "ConfigurationLockedError",
    "ParseError",
    "ConflictOnCreateError",
    "TransportError",
    "ProbeNotImplementedError",
]
