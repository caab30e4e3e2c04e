"""
LatchkeySessions - Fault definitions.

Defines session-specific faults on top of the LatchkeyFaults base.
Three families:

- Lifecycle faults: programmer misuse (wrong call order). Always fatal.
- Validation faults: malformed or adversarial input, raised before any
  durable side effect.
- Storage faults: environment/backend failures. Surfaced to the caller,
  never retried automatically.
"""

from __future__ import annotations

from latchkey.faults.core import Fault, FaultDomain, Severity


# ============================================================================
# Session Fault Base
# ============================================================================

class SessionFault(Fault):
    """Base class for session-related faults."""

    domain = FaultDomain.SESSION


# ============================================================================
# Lifecycle Faults
# ============================================================================

class SessionLifecycleFault(SessionFault):
    """Operation called in the wrong lifecycle state."""

    severity = Severity.FATAL
    retryable = False


class SessionNotStartedFault(SessionLifecycleFault):
    """
    Session state accessed while the session is not started.

    Raised for reads/writes before ``start()`` and after the session has
    been committed or destroyed.
    """

    code = "SESSION_NOT_STARTED"
    message = "Session is not started"


class SessionAlreadyStartedFault(SessionLifecycleFault):
    """Configuration attempted after the session left the unstarted state."""

    code = "SESSION_ALREADY_STARTED"
    message = "Session is already started"


class StorageNotOpenFault(SessionLifecycleFault):
    """Storage record accessed before ``open()``/``create()``."""

    code = "SESSION_STORAGE_NOT_OPEN"
    message = "Session storage is not open"


class StorageAlreadyOpenFault(SessionLifecycleFault):
    """``open()`` called on a storage handle that already holds a record."""

    code = "SESSION_STORAGE_ALREADY_OPEN"
    message = "Session storage is already open"


class SessionContextFault(SessionLifecycleFault):
    """The request context already carries a session under the same key."""

    code = "SESSION_CONTEXT_OCCUPIED"
    message = "Scope key already holds a session"

    def __init__(self, key: str, **kwargs):
        super().__init__(**kwargs)
        self.key = key
        self.message = f"Scope key '{key}' already holds a session"


class SessionIdExhaustedFault(SessionLifecycleFault):
    """
    Could not mint a free session id within the retry budget.

    Only happens with a broken generator or a storage that reports every
    id as taken.
    """

    code = "SESSION_ID_EXHAUSTED"
    message = "Unable to generate a free session id"

    def __init__(self, attempts: int, **kwargs):
        super().__init__(**kwargs)
        self.attempts = attempts
        self.message = f"Unable to generate a free session id after {attempts} attempts"


class SessionConfigFault(SessionFault):
    """Unknown or malformed session option."""

    code = "SESSION_CONFIG_INVALID"
    message = "Invalid session configuration"
    domain = FaultDomain.CONFIG

    def __init__(self, option: str, cause: str, **kwargs):
        super().__init__(**kwargs)
        self.option = option
        self.cause = cause
        self.message = f"Invalid session option '{option}': {cause}"


# ============================================================================
# Validation Faults
# ============================================================================

class SessionValidationFault(SessionFault):
    """Input rejected before touching storage."""

    domain = FaultDomain.SECURITY
    severity = Severity.ERROR
    public = True
    retryable = False


class SessionInvalidFault(SessionValidationFault):
    """
    Session ID is invalid or malformed.

    This may indicate tampering: ids are used as file names, so anything
    outside the id grammar is refused.
    """

    code = "SESSION_INVALID"
    message = "Invalid session identifier"

    def __init__(self, session_id: object = None, **kwargs):
        super().__init__(**kwargs)
        self.session_id_hash = (
            self.hash_id(session_id) if isinstance(session_id, str) else None
        )


class SessionIdConflictFault(SessionValidationFault):
    """
    Cookie and alternate transport carry different session ids.

    The engine refuses to pick one; the pipeline adapter decides policy.
    """

    code = "SESSION_ID_CONFLICT"
    message = "Conflicting session identifiers in cookie and query"

    def __init__(self, cookie_id: str, query_id: str, **kwargs):
        super().__init__(**kwargs)
        self.cookie_id_hash = self.hash_id(cookie_id)
        self.query_id_hash = self.hash_id(query_id)


# ============================================================================
# Storage Faults
# ============================================================================

class SessionStorageFault(SessionFault):
    """Base class for backend failures."""

    domain = FaultDomain.IO
    severity = Severity.ERROR
    public = False
    retryable = False


class SessionStoreUnavailableFault(SessionStorageFault):
    """
    Session store is unavailable.

    Examples: save directory missing and not creatable, not writable.
    """

    code = "SESSION_STORE_UNAVAILABLE"
    message = "Session storage unavailable"

    def __init__(self, store_name: str, cause: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.store_name = store_name
        self.cause = cause
        if cause:
            self.message = f"Session store '{store_name}' unavailable: {cause}"
        else:
            self.message = f"Session store '{store_name}' unavailable"


class SessionStoreIOFault(SessionStorageFault):
    """Reading or writing a session record failed."""

    code = "SESSION_STORE_IO"
    message = "Session storage I/O failure"

    def __init__(self, store_name: str, cause: str, **kwargs):
        super().__init__(**kwargs)
        self.store_name = store_name
        self.cause = cause
        self.message = f"Session store '{store_name}' I/O failure: {cause}"


class SessionSerializationFault(SessionStorageFault):
    """Session state cannot be serialized."""

    code = "SESSION_SERIALIZATION_FAILED"
    message = "Session data cannot be serialized"

    def __init__(self, cause: str, **kwargs):
        super().__init__(**kwargs)
        self.cause = cause
        self.message = f"Session data cannot be serialized: {cause}"


class SessionStoreCorruptedFault(SessionStorageFault):
    """
    Session data in store is corrupted.

    Data cannot be deserialized or is structurally invalid.
    """

    code = "SESSION_STORE_CORRUPTED"
    message = "Session data corrupted"


class SessionNotFoundFault(SessionStorageFault):
    """
    No record exists for the requested session id.

    Recoverable: the caller asked about an id that was never stored or
    has been collected.
    """

    code = "SESSION_NOT_FOUND"
    message = "Session not found"
    severity = Severity.WARN
