"""
LatchkeySessions - Session storage abstraction.

Defines the SessionStorage protocol and concrete implementations:
- FileStorage: one file per session, exclusive flock per record
- MemoryStorage: in-process storage (dev/testing)

A storage handle serves one record at a time:

    open(id) -> read() -> write(mapping) -> close()

The record stays exclusively locked from ``open``/``create`` until
``close``/``destroy``, which serializes concurrent requests for the same
session across threads and processes.
"""

from __future__ import annotations

import fcntl
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO, Mapping, Optional, Protocol, runtime_checkable

from latchkey.faults.core import Fault

from .faults import (
    SessionConfigFault,
    SessionInvalidFault,
    SessionStoreCorruptedFault,
    SessionStoreIOFault,
    SessionStoreUnavailableFault,
    StorageAlreadyOpenFault,
    StorageNotOpenFault,
)
from .ids import IdentifierGenerator, is_valid_id
from .policy import PeerInfo, SessionOptions
from .serializer import deserialize, serialize

logger = logging.getLogger("latchkey.sessions.store")


# ============================================================================
# SessionStorage Protocol
# ============================================================================

@runtime_checkable
class SessionStorage(Protocol):
    """
    Abstract session storage interface.

    Stores are responsible ONLY for persistence and locking - id resolution
    and cookies belong to SessionEngine.
    """

    @property
    def id(self) -> str | None:
        """Id of the open record, None when closed."""
        ...

    @property
    def is_open(self) -> bool:
        """Check if a record is open (and locked)."""
        ...

    def create(self) -> str:
        """
        Reserve a new unique id and open it.

        Raises:
            SessionStoreUnavailableFault: Backing medium cannot be prepared
        """
        ...

    def open(self, session_id: str) -> None:
        """
        Lock and load the record for ``session_id``.

        A record that does not exist yet is opened as an empty session.

        Raises:
            SessionInvalidFault: Id fails the id grammar
        """
        ...

    def read(self) -> dict[str, Any]:
        """
        Return the loaded state.

        Raises:
            StorageNotOpenFault: Nothing is open
        """
        ...

    def write(self, data: Mapping[str, Any]) -> None:
        """
        Persist ``data`` as the new value of the open record.

        Raises:
            StorageNotOpenFault: Nothing is open
            SessionSerializationFault: Data cannot be serialized
            SessionStoreIOFault: Write failed
        """
        ...

    def close(self) -> None:
        """Release the record. Safe to call when nothing is open."""
        ...

    def destroy(self) -> bool:
        """
        Remove the open record and release it.

        Returns:
            False if the record was already gone, True otherwise
        """
        ...

    def gc(self, max_lifetime: float) -> int:
        """
        Remove records untouched for more than ``max_lifetime`` seconds.

        Locked records are skipped.

        Returns:
            Number of records removed
        """
        ...


# ============================================================================
# AbstractStorage - shared plumbing
# ============================================================================

class AbstractStorage(ABC):
    """
    Base class for storage backends.

    Handles option defaults, id validation, open/closed guards and id
    minting; subclasses provide locking and the medium.

    Usable as a context manager that closes the record on exit.
    """

    store_name = "abstract"

    def __init__(
        self,
        options: SessionOptions | None = None,
        *,
        generator: IdentifierGenerator | None = None,
        peer: PeerInfo | None = None,
    ):
        self.options = options or SessionOptions()
        self.generator = generator or IdentifierGenerator(
            self.options.hash_algorithm, self.options.id_max_attempts,
        )
        self.peer = peer
        self._id: str | None = None
        self._data: dict[str, Any] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        state = f"open={Fault.hash_id(self._id)}" if self._id else "closed"
        return f"{self.__class__.__name__}({state})"

    @property
    def id(self) -> str | None:
        return self._id

    @property
    def is_open(self) -> bool:
        return self._id is not None

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def create(self) -> str:
        self._ensure_closed()
        self._prepare()
        session_id = self.generator.free_id(self._is_id_free, self.peer)
        self.open(session_id)
        logger.debug(f"Created session record {Fault.hash_id(session_id)} ({self.store_name})")
        return session_id

    def read(self) -> dict[str, Any]:
        self._ensure_open()
        return dict(self._data)

    def write(self, data: Mapping[str, Any]) -> None:
        self._ensure_open()
        payload = serialize(data)
        self._persist(payload)
        self._data = dict(data)

    @abstractmethod
    def open(self, session_id: str) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def destroy(self) -> bool: ...

    @abstractmethod
    def gc(self, max_lifetime: float) -> int: ...

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _prepare(self) -> None:
        """Make sure the medium can hold new records."""

    @abstractmethod
    def _is_id_free(self, session_id: str) -> bool:
        """Check (and reserve) an unused id."""

    @abstractmethod
    def _persist(self, payload: bytes) -> None:
        """Write serialized state for the open record."""

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _validate_id(self, session_id: object) -> None:
        if not is_valid_id(session_id):
            raise SessionInvalidFault(session_id)

    def _ensure_open(self) -> None:
        if not self.is_open:
            raise StorageNotOpenFault()

    def _ensure_closed(self) -> None:
        if self.is_open:
            raise StorageAlreadyOpenFault()

    def _decode(self, payload: bytes, session_id: str) -> dict[str, Any]:
        try:
            return deserialize(payload)
        except SessionStoreCorruptedFault as e:
            logger.warning(
                f"Discarding unreadable session record {Fault.hash_id(session_id)}: {e.message}"
            )
            return {}


# ============================================================================
# FileStorage - File-Based Storage
# ============================================================================

class FileStorage(AbstractStorage):
    """
    File-based session storage.

    Features:
    - One file per session: ``<save_path>/<filename_pattern with id>``
    - Exclusive ``flock`` held while the record is open
    - Atomic id reservation (``O_CREAT | O_EXCL``)
    - Non-blocking GC that skips records in use

    Example:
        >>> options = SessionOptions(save_path="/tmp/sessions")
        >>> with FileStorage(options) as storage:
        ...     session_id = storage.create()
        ...     storage.write({"cart": [1, 2]})
    """

    store_name = "file"

    def __init__(self, options: SessionOptions | None = None, **kwargs):
        super().__init__(options, **kwargs)
        self.save_path = Path(self.options.save_path)
        self._handle: Optional[BinaryIO] = None

    def path_for(self, session_id: str) -> Path:
        """Full path of the record for ``session_id``."""
        return self.save_path / self.options.filename_pattern.format(session_id)

    @property
    def path(self) -> Path | None:
        """Path of the open record."""
        return self.path_for(self._id) if self._id else None

    def exists(self, session_id: str) -> bool:
        """Check whether a record is on disk, without locking it."""
        self._validate_id(session_id)
        return self.path_for(session_id).is_file()

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def open(self, session_id: str) -> None:
        self._ensure_closed()
        self._validate_id(session_id)

        handle = self._lock(self.path_for(session_id))
        try:
            payload = handle.read()
        except OSError as e:
            self._release(handle)
            raise SessionStoreIOFault(self.store_name, f"unable to read session file: {e}") from e

        self._handle = handle
        self._id = session_id
        self._data = self._decode(payload, session_id)

    def close(self) -> None:
        if not self.is_open:
            return

        handle = self._handle
        try:
            handle.flush()
        finally:
            self._reset()
            self._release(handle)

    def destroy(self) -> bool:
        self._ensure_open()

        session_id = self._id
        path = self.path_for(session_id)
        handle = self._handle
        try:
            # Unlink while still holding the lock; waiters notice the
            # inode change and reopen.
            path.unlink()
            removed = True
        except FileNotFoundError:
            logger.warning(f"Session record already removed: {Fault.hash_id(session_id)}")
            removed = False
        except OSError as e:
            raise SessionStoreIOFault(self.store_name, f"unable to remove session file: {e}") from e
        finally:
            self._reset()
            self._release(handle)

        return removed

    def gc(self, max_lifetime: float) -> int:
        cutoff = time.time() - max_lifetime
        removed = 0

        for path in self.save_path.glob(self.options.filename_pattern.format("*")):
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue

            if self._collect(path, cutoff):
                removed += 1

        if removed:
            logger.info(f"Collected {removed} expired session records from {self.save_path}")
        return removed

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _prepare(self) -> None:
        try:
            self.save_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SessionStoreUnavailableFault(self.store_name, str(e)) from e

        if not os.access(self.save_path, os.W_OK | os.X_OK):
            raise SessionStoreUnavailableFault(
                self.store_name, f"{self.save_path} is not writable"
            )

    def _is_id_free(self, session_id: str) -> bool:
        try:
            fd = os.open(self.path_for(session_id), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            return False
        except OSError as e:
            raise SessionStoreUnavailableFault(self.store_name, str(e)) from e
        os.close(fd)
        return True

    def _persist(self, payload: bytes) -> None:
        handle = self._handle
        try:
            handle.seek(0)
            handle.truncate()
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        except OSError as e:
            raise SessionStoreIOFault(self.store_name, f"error writing to session file: {e}") from e

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock(self, path: Path) -> BinaryIO:
        """Open ``path`` and take the exclusive lock, blocking until free."""
        while True:
            try:
                fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
            except OSError as e:
                raise SessionStoreUnavailableFault(
                    self.store_name, f"unable to open session file {path}: {e}"
                ) from e

            handle = os.fdopen(fd, "r+b")
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                if self._same_file(handle, path):
                    return handle
            except BaseException:
                handle.close()
                raise

            # Record was destroyed or collected while we waited
            handle.close()

    @staticmethod
    def _release(handle: BinaryIO) -> None:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()

    @staticmethod
    def _same_file(handle: BinaryIO, path: Path) -> bool:
        try:
            on_disk = os.stat(path)
        except FileNotFoundError:
            return False
        held = os.fstat(handle.fileno())
        return (held.st_dev, held.st_ino) == (on_disk.st_dev, on_disk.st_ino)

    def _collect(self, path: Path, cutoff: float) -> bool:
        """Remove one expired record unless somebody holds it."""
        try:
            fd = os.open(path, os.O_RDWR)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"GC could not open {path.name}: {e}")
            return False

        with os.fdopen(fd, "r+b") as handle:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                logger.debug(f"GC skipped locked record {path.name}")
                return False

            try:
                # Touched or replaced between the scan and the lock
                if not self._same_file(handle, path) or os.fstat(fd).st_mtime >= cutoff:
                    return False
                path.unlink()
                return True
            except OSError as e:
                logger.warning(f"GC could not remove {path.name}: {e}")
                return False
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)

    def _reset(self) -> None:
        self._handle = None
        self._id = None
        self._data = {}


# ============================================================================
# MemoryStorage - In-Memory Storage
# ============================================================================

class MemoryVault:
    """
    Process-wide record table for MemoryStorage.

    Holds serialized payloads with their modification time and one
    ``threading.Lock`` per id. Lock entries are reference counted: an entry
    lives while some handle holds or waits for it, so the table stays as
    small as the set of ids in use.
    """

    def __init__(self):
        self._records: dict[str, tuple[bytes, float]] = {}
        self._locks: dict[str, list] = {}      # id -> [lock, holders + waiters]
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._records

    # ------------------------------------------------------------------
    # Per-id locks
    # ------------------------------------------------------------------

    def acquire(self, session_id: str, blocking: bool = True) -> bool:
        """Take the lock for ``session_id``; False if non-blocking and held."""
        with self._guard:
            entry = self._locks.setdefault(session_id, [threading.Lock(), 0])
            entry[1] += 1

        if entry[0].acquire(blocking):
            return True
        self._forget(session_id)
        return False

    def release(self, session_id: str) -> None:
        self._locks[session_id][0].release()
        self._forget(session_id)

    def is_locked(self, session_id: str) -> bool:
        with self._guard:
            entry = self._locks.get(session_id)
            return entry is not None and entry[0].locked()

    def lock_count(self) -> int:
        """Number of ids with a live lock entry."""
        with self._guard:
            return len(self._locks)

    def _forget(self, session_id: str) -> None:
        with self._guard:
            entry = self._locks[session_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[session_id]

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def reserve(self, session_id: str) -> bool:
        with self._guard:
            if session_id in self._records:
                return False
            self._records[session_id] = (b"", time.time())
            return True

    def load(self, session_id: str) -> bytes:
        with self._guard:
            payload, _ = self._records.get(session_id, (b"", 0.0))
            return payload

    def store(self, session_id: str, payload: bytes) -> None:
        with self._guard:
            self._records[session_id] = (payload, time.time())

    def remove(self, session_id: str) -> bool:
        with self._guard:
            return self._records.pop(session_id, None) is not None

    def modified_at(self, session_id: str) -> float | None:
        with self._guard:
            record = self._records.get(session_id)
            return record[1] if record else None

    def ids(self) -> list[str]:
        with self._guard:
            return list(self._records)

    def clear(self) -> None:
        with self._guard:
            self._records.clear()


_default_vault = MemoryVault()


def default_vault() -> MemoryVault:
    """Vault shared by MemoryStorage instances created without one."""
    return _default_vault


class MemoryStorage(AbstractStorage):
    """
    In-memory session storage for development and testing.

    Same contract as FileStorage; locking is per id within the process.
    NOT suitable for production (no persistence across restarts).
    """

    store_name = "memory"

    def __init__(
        self,
        options: SessionOptions | None = None,
        *,
        vault: MemoryVault | None = None,
        **kwargs,
    ):
        super().__init__(options, **kwargs)
        self.vault = vault if vault is not None else default_vault()

    def open(self, session_id: str) -> None:
        self._ensure_closed()
        self._validate_id(session_id)

        self.vault.acquire(session_id)
        try:
            payload = self.vault.load(session_id)
        except BaseException:
            self.vault.release(session_id)
            raise

        self._id = session_id
        self._data = self._decode(payload, session_id)

    def close(self) -> None:
        if not self.is_open:
            return
        self._unlock()

    def destroy(self) -> bool:
        self._ensure_open()
        session_id = self._id
        try:
            removed = self.vault.remove(session_id)
            if not removed:
                logger.warning(f"Session record already removed: {Fault.hash_id(session_id)}")
        finally:
            self._unlock()
        return removed

    def gc(self, max_lifetime: float) -> int:
        cutoff = time.time() - max_lifetime
        removed = 0

        for session_id in self.vault.ids():
            modified = self.vault.modified_at(session_id)
            if modified is None or modified >= cutoff:
                continue

            if not self.vault.acquire(session_id, blocking=False):
                logger.debug(f"GC skipped locked record {Fault.hash_id(session_id)}")
                continue
            try:
                modified = self.vault.modified_at(session_id)
                if modified is not None and modified < cutoff and self.vault.remove(session_id):
                    removed += 1
            finally:
                self.vault.release(session_id)

        return removed

    def _is_id_free(self, session_id: str) -> bool:
        return self.vault.reserve(session_id)

    def _persist(self, payload: bytes) -> None:
        self.vault.store(self._id, payload)

    def _unlock(self) -> None:
        session_id = self._id
        self._id = None
        self._data = {}
        self.vault.release(session_id)


# ============================================================================
# Backend registry
# ============================================================================

STORAGE_BACKENDS: dict[str, type[AbstractStorage]] = {
    "file": FileStorage,
    "memory": MemoryStorage,
}


def register_backend(name: str, backend: type[AbstractStorage]) -> None:
    """Make ``backend`` selectable through ``storage_backend=name``."""
    STORAGE_BACKENDS[name] = backend


def resolve_storage(
    options: SessionOptions,
    peer: PeerInfo | None = None,
) -> SessionStorage:
    """
    Build the storage selected by ``options.storage_backend``.

    The option may be a registered backend name, a storage class, or a
    factory called with the options.

    Raises:
        SessionConfigFault: Unknown name or object not implementing storage
    """
    backend = options.storage_backend

    if isinstance(backend, str):
        try:
            backend_cls = STORAGE_BACKENDS[backend]
        except KeyError:
            raise SessionConfigFault("storage_backend", f"unknown backend {backend!r}") from None
        return backend_cls(options, peer=peer)

    if isinstance(backend, type) and issubclass(backend, AbstractStorage):
        return backend(options, peer=peer)

    if callable(backend):
        storage = backend(options)
        if isinstance(storage, SessionStorage):
            return storage

    raise SessionConfigFault(
        "storage_backend", f"{backend!r} does not implement the storage interface"
    )
