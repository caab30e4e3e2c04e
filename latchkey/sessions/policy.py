"""
LatchkeySessions - Options.

Defines the resolved configuration a session runs with:
- SessionOptions: cookie, transport, storage and GC settings
- PeerInfo: remote peer identity mixed into new session ids

Options are resolved once (defaults, then config, then explicit
overrides) and are immutable afterwards.
"""

from __future__ import annotations

import random
import tempfile
import time
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Callable, Mapping

from .faults import SessionConfigFault


DEFAULT_COOKIE_NAME = "SESSID"
DEFAULT_FILENAME_PATTERN = "sess_{}"


# ============================================================================
# PeerInfo
# ============================================================================

@dataclass(frozen=True)
class PeerInfo:
    """
    Identity of the remote peer for the current request.

    Only used as extra entropy when minting ids; never stored.
    """

    address: str = ""
    port: int | None = None
    user_agent: str = ""

    @classmethod
    def from_scope(cls, scope: Mapping[str, Any]) -> PeerInfo:
        """Build from an ASGI scope (``client`` tuple and headers)."""
        address, port = "", None
        client = scope.get("client")
        if client:
            address, port = client[0], client[1]

        user_agent = ""
        for name, value in scope.get("headers", ()):
            if name == b"user-agent":
                user_agent = value.decode("latin-1")
                break

        return cls(address=address, port=port, user_agent=user_agent)

    def fingerprint(self) -> str:
        return f"{self.address}{self.port or ''}{self.user_agent}"


# ============================================================================
# SessionOptions
# ============================================================================

@dataclass(frozen=True)
class SessionOptions:
    """
    Resolved session configuration.

    Attributes:
        cookie_name: Cookie token (also the query parameter name)
        cookie_lifetime: Seconds until the cookie expires (0 = browser session)
        cookie_path: Cookie path (None omits it)
        cookie_domain: Cookie domain (None omits it)
        cookie_secure: Secure flag
        cookie_httponly: HttpOnly flag
        storage_backend: Backend name ("file", "memory"), class or factory
        save_path: Directory for file-backed records
        filename_pattern: Record name, ``{}`` is replaced by the id
        use_cookies: Resolve ids from, and issue, the identifying cookie
        use_only_cookies: Ignore the query-string transport
        hash_algorithm: hashlib algorithm used for new ids
        id_max_attempts: Retry budget when minting a free id
        gc_probability: GC runs with probability gc_probability/gc_divisor
        gc_divisor: See gc_probability
        gc_maxlifetime: Seconds after which an untouched record is garbage

    Example:
        >>> options = SessionOptions(cookie_name="APPSESS", cookie_lifetime=3600)
        >>> options.merge(cookie_secure=True).cookie_secure
        True
    """

    cookie_name: str = DEFAULT_COOKIE_NAME
    cookie_lifetime: int = 0
    cookie_path: str | None = "/"
    cookie_domain: str | None = None
    cookie_secure: bool = False
    cookie_httponly: bool = False

    storage_backend: str | type | Callable[..., Any] = "file"
    save_path: str = tempfile.gettempdir()
    filename_pattern: str = DEFAULT_FILENAME_PATTERN

    use_cookies: bool = True
    use_only_cookies: bool = True

    hash_algorithm: str = "sha1"
    id_max_attempts: int = 100

    gc_probability: int = 1
    gc_divisor: int = 100
    gc_maxlifetime: int = 1440

    def __post_init__(self):
        if not self.cookie_name:
            raise SessionConfigFault("cookie_name", "must not be empty")
        if self.cookie_lifetime < 0:
            raise SessionConfigFault("cookie_lifetime", "must be >= 0")
        if self.id_max_attempts < 1:
            raise SessionConfigFault("id_max_attempts", "must be >= 1")
        if self.gc_divisor < 1:
            raise SessionConfigFault("gc_divisor", "must be >= 1")
        if "{}" not in self.filename_pattern:
            raise SessionConfigFault("filename_pattern", "must contain '{}'")

    @classmethod
    def option_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> SessionOptions:
        """
        Create options from a configuration mapping.

        Raises:
            SessionConfigFault: Unknown option name
        """
        return cls().merge(**config)

    def merge(self, **overrides: Any) -> SessionOptions:
        """Return a copy with ``overrides`` applied over these options."""
        known = self.option_names()
        for key in overrides:
            if key not in known:
                raise SessionConfigFault(key, "unknown option")
        return replace(self, **overrides)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if not isinstance(self.storage_backend, str):
            data["storage_backend"] = getattr(
                self.storage_backend, "__name__", repr(self.storage_backend)
            )
        return data

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def cookie_expiry(self, now: float | None = None) -> float:
        """Epoch expiry for a fresh cookie (0 = session cookie)."""
        if self.cookie_lifetime == 0:
            return 0
        if now is None:
            now = time.time()
        return now + self.cookie_lifetime

    def should_collect(self, rng: random.Random | None = None) -> bool:
        """Roll the GC dice for this request."""
        if self.gc_probability <= 0:
            return False
        roll = (rng or random).randint(1, self.gc_divisor)
        return roll <= self.gc_probability
