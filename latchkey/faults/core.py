"""
LatchkeyFaults - Core types and fault taxonomy.

Every error the library raises is a ``Fault``: an exception carrying a stable
code, the domain it came from and a severity that callers can act on
(``FATAL`` for misuse, ``ERROR``/``WARN`` for the medium or the client).
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Any, Optional


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """Fault severity levels."""
    INFO = "info"
    WARN = "warn"       # Recoverable
    ERROR = "error"
    FATAL = "fatal"     # Contract violation, never retried


class FaultDomain(str, Enum):
    """Functional area a fault belongs to."""
    CONFIG = "config"       # Bad options or config sources
    SESSION = "session"     # Lifecycle misuse
    SECURITY = "security"   # Malformed or hostile client input
    IO = "io"               # Storage medium failures


DOMAIN_DEFAULTS: dict[FaultDomain, dict[str, Any]] = {
    FaultDomain.CONFIG: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.SESSION: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.SECURITY: {"severity": Severity.ERROR, "retryable": False},
    FaultDomain.IO: {"severity": Severity.ERROR, "retryable": False},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Structured error with a machine-readable ``code``.

    Subclasses declare ``code``, ``message`` and ``domain`` (and optionally
    ``severity``, ``retryable``, ``public``) as class attributes; instances
    fill in per-raise context through ``metadata``. Anything left unset falls
    back to ``DOMAIN_DEFAULTS``.

    Example:
        >>> class RecordMissing(Fault):
        ...     code = "RECORD_MISSING"
        ...     message = "No record for session"
        ...     domain = FaultDomain.IO
        >>> raise RecordMissing(metadata={"session_id_hash": Fault.hash_id(sid)})
    """

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        public: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        cls = type(self)
        self.code = code or getattr(cls, "code", None)
        self.message = message or getattr(cls, "message", None)
        self.domain = domain or getattr(cls, "domain", None)
        if not (self.code and self.message and self.domain):
            raise TypeError(f"{cls.__name__} needs a code, message and domain")

        super().__init__(self.message)

        self.domain = FaultDomain(self.domain)
        defaults = DOMAIN_DEFAULTS[self.domain]
        self.severity = severity or getattr(cls, "severity", None) or defaults["severity"]
        self.retryable = retryable if retryable is not None else getattr(cls, "retryable", defaults["retryable"])
        self.public = public if public is not None else getattr(cls, "public", False)
        self.metadata = dict(metadata or {})

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, domain={self.domain.value}, severity={self.severity.value})"

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form for logs and JSON error bodies."""
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "public": self.public,
            "metadata": self.metadata,
        }

    @staticmethod
    def hash_id(value: str) -> str:
        """Loggable stand-in for a session id."""
        return f"sha256:{hashlib.sha256(value.encode()).hexdigest()[:16]}"
