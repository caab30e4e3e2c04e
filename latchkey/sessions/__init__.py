"""
LatchkeySessions - Server-side HTTP session management.

This package provides:
- A per-request session engine with an explicit lifecycle
- Cookie (and optional query-string) session id transport
- File-backed storage with exclusive per-record locking
- In-memory storage for development and tests

Philosophy:
- One writer per session at a time (records are locked while open)
- Ids from the client are untrusted until they pass the id grammar
- Persistence failures are surfaced, never swallowed
"""

from .engine import SessionEngine, SessionStatus

from .policy import (
    PeerInfo,
    SessionOptions,
)

from .ids import (
    IdentifierGenerator,
    is_valid_id,
)

from .serializer import (
    serialize,
    deserialize,
)

from .store import (
    SessionStorage,
    AbstractStorage,
    FileStorage,
    MemoryStorage,
    MemoryVault,
    STORAGE_BACKENDS,
    register_backend,
    resolve_storage,
)

from .faults import (
    SessionFault,
    SessionLifecycleFault,
    SessionNotStartedFault,
    SessionAlreadyStartedFault,
    StorageNotOpenFault,
    StorageAlreadyOpenFault,
    SessionContextFault,
    SessionIdExhaustedFault,
    SessionConfigFault,
    SessionValidationFault,
    SessionInvalidFault,
    SessionIdConflictFault,
    SessionStorageFault,
    SessionStoreUnavailableFault,
    SessionStoreIOFault,
    SessionSerializationFault,
    SessionStoreCorruptedFault,
    SessionNotFoundFault,
)

__all__ = [
    # Engine
    "SessionEngine",
    "SessionStatus",
    # Options
    "PeerInfo",
    "SessionOptions",
    # Ids
    "IdentifierGenerator",
    "is_valid_id",
    # Serialization
    "serialize",
    "deserialize",
    # Storage
    "SessionStorage",
    "AbstractStorage",
    "FileStorage",
    "MemoryStorage",
    "MemoryVault",
    "STORAGE_BACKENDS",
    "register_backend",
    "resolve_storage",
    # Faults
    "SessionFault",
    "SessionLifecycleFault",
    "SessionNotStartedFault",
    "SessionAlreadyStartedFault",
    "StorageNotOpenFault",
    "StorageAlreadyOpenFault",
    "SessionContextFault",
    "SessionIdExhaustedFault",
    "SessionConfigFault",
    "SessionValidationFault",
    "SessionInvalidFault",
    "SessionIdConflictFault",
    "SessionStorageFault",
    "SessionStoreUnavailableFault",
    "SessionStoreIOFault",
    "SessionSerializationFault",
    "SessionStoreCorruptedFault",
    "SessionNotFoundFault",
]
