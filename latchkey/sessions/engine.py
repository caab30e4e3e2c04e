"""
LatchkeySessions - Session engine.

SessionEngine drives one session for one request:
- Resolves the session id (explicit, cookie, query parameter)
- Binds storage lazily and loads state
- Exposes the state through a typed mapping interface
- Persists or destroys the record and queues the identifying cookie

Lifecycle:

    UNSTARTED --start()--> STARTED --write_close()/destroy()/abort()--> CLOSED

A closed engine cannot be restarted; build a new one per request.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterator, Mapping, Optional
from urllib.parse import parse_qsl

from latchkey.cookies import CookieJar
from latchkey.faults.core import Fault

from .faults import (
    SessionAlreadyStartedFault,
    SessionIdConflictFault,
    SessionInvalidFault,
    SessionNotStartedFault,
)
from .ids import is_valid_id
from .policy import PeerInfo, SessionOptions
from .store import SessionStorage, resolve_storage

logger = logging.getLogger("latchkey.sessions")

_MISSING = object()


class SessionStatus(str, Enum):
    """Engine lifecycle states."""

    UNSTARTED = "unstarted"
    STARTED = "started"
    CLOSED = "closed"


class SessionEngine:
    """
    Per-request session state machine.

    Example:
        >>> engine = SessionEngine(cookies="SESSID=abc123", options=options)
        >>> engine.start()
        >>> engine.set("user_id", 42)
        >>> engine.write_close()
        >>> engine.get_cookie_headers()
        []

    Usable as a context manager: ``with engine:`` starts the session and
    commits it on exit.
    """

    def __init__(
        self,
        cookies: str | Mapping[str, str] | None = None,
        query: Mapping[str, str] | None = None,
        options: SessionOptions | None = None,
        *,
        peer: PeerInfo | None = None,
        storage: SessionStorage | None = None,
    ):
        """
        Args:
            cookies: Raw ``Cookie`` header or pre-parsed cookie mapping
            query: Query parameters (alternate id transport)
            options: Session options (defaults when None)
            peer: Remote peer identity, mixed into new ids
            storage: Storage to bind instead of the configured backend
        """
        self._jar = CookieJar(cookies)
        self._query = dict(query or {})
        self._options = options or SessionOptions()
        self._peer = peer
        self._storage = storage

        self._status = SessionStatus.UNSTARTED
        self._explicit_id: Optional[str] = None
        self._id: Optional[str] = None
        self._data: dict[str, Any] = {}

    @classmethod
    def from_scope(
        cls,
        scope: Mapping[str, Any],
        options: SessionOptions | None = None,
        *,
        storage: SessionStorage | None = None,
        ignore_inbound: bool = False,
    ) -> SessionEngine:
        """
        Build an engine from an ASGI HTTP scope.

        Args:
            scope: ASGI scope
            options: Session options
            storage: Storage to bind
            ignore_inbound: Drop inbound cookies and query so a fresh id
                is minted
        """
        cookie_header = None
        query: dict[str, str] = {}

        if not ignore_inbound:
            cookie_values = [
                value.decode("latin-1")
                for name, value in scope.get("headers", ())
                if name == b"cookie"
            ]
            if cookie_values:
                cookie_header = "; ".join(cookie_values)

            raw_query = scope.get("query_string", b"").decode("latin-1")
            for key, value in parse_qsl(raw_query, keep_blank_values=True):
                query.setdefault(key, value)

        return cls(
            cookies=cookie_header,
            query=query,
            options=options,
            peer=PeerInfo.from_scope(scope),
            storage=storage,
        )

    def __repr__(self) -> str:
        ident = Fault.hash_id(self._id) if self._id else None
        return f"SessionEngine(status={self._status.value}, id={ident})"

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def id(self) -> Optional[str]:
        """Current session id (None until started)."""
        return self._id

    @property
    def name(self) -> str:
        """Cookie token identifying the session."""
        return self._options.cookie_name

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_started(self) -> bool:
        return self._status is SessionStatus.STARTED

    @property
    def options(self) -> SessionOptions:
        return self._options

    @property
    def storage(self) -> Optional[SessionStorage]:
        """Bound storage (None until bound)."""
        return self._storage

    # ========================================================================
    # Configuration (UNSTARTED only)
    # ========================================================================

    def configure(
        self,
        options: SessionOptions | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> None:
        """
        Merge options over the current ones.

        Raises:
            SessionAlreadyStartedFault: Engine already started or closed
            SessionConfigFault: Unknown option name or bad value
        """
        self._ensure_unstarted()

        if options is None:
            resolved = self._options
        elif isinstance(options, SessionOptions):
            resolved = options
        else:
            resolved = self._options.merge(**options)

        if overrides:
            resolved = resolved.merge(**overrides)
        self._options = resolved

    def set_save_handler(self, storage: SessionStorage) -> None:
        """Bind the storage used by ``start()``."""
        self._ensure_unstarted()
        self._storage = storage

    def set_id(self, session_id: str) -> None:
        """
        Use ``session_id`` instead of resolving one from the request.

        Raises:
            SessionAlreadyStartedFault: Engine already started or closed
            SessionInvalidFault: Id fails the id grammar
        """
        self._ensure_unstarted()
        if not is_valid_id(session_id):
            raise SessionInvalidFault(session_id)
        self._explicit_id = session_id

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start(self) -> None:
        """
        Resolve the id, lock and load the record.

        No-op when already started.

        Raises:
            SessionAlreadyStartedFault: Engine is closed
            SessionIdConflictFault: Cookie and query carry different ids
            SessionInvalidFault: Resolved id fails the id grammar
            SessionStorageFault: Storage could not be prepared or read
        """
        if self._status is SessionStatus.STARTED:
            return
        if self._status is SessionStatus.CLOSED:
            raise SessionAlreadyStartedFault(message="Session is closed and cannot be restarted")

        session_id = self._resolve_id()
        if session_id is not None and not is_valid_id(session_id):
            raise SessionInvalidFault(session_id)

        if self._storage is None:
            self._storage = resolve_storage(self._options, self._peer)
        storage = self._storage

        if session_id is None:
            session_id = storage.create()
            fresh = True
        else:
            storage.open(session_id)
            fresh = False

        try:
            self._data = storage.read()
            self._maybe_collect(storage)
        except BaseException:
            storage.close()
            raise

        self._id = session_id
        self._status = SessionStatus.STARTED

        if self._options.use_cookies and self._jar.get(self.name) != session_id:
            self._issue_cookie()

        logger.debug(
            f"Session started {Fault.hash_id(session_id)} ({'new' if fresh else 'resumed'})"
        )

    def regenerate_id(self, delete_old: bool = False) -> str:
        """
        Move the current state to a freshly minted id.

        The old record is persisted (or destroyed with ``delete_old``) and
        released before the new one is created; a refreshed cookie is queued.

        Returns:
            The new session id
        """
        self._ensure_started()
        storage = self._storage
        old_id = self._id

        try:
            if delete_old:
                storage.destroy()
            else:
                try:
                    storage.write(self._data)
                finally:
                    storage.close()
            self._id = storage.create()
        except BaseException:
            storage.close()
            self._status = SessionStatus.CLOSED
            self._data = {}
            raise

        self._issue_cookie()
        logger.info(
            f"Session id regenerated: {Fault.hash_id(old_id)} -> {Fault.hash_id(self._id)}"
        )
        return self._id

    def write_close(self) -> None:
        """
        Persist state and release the record.

        The storage is closed and the engine is CLOSED even when the write
        fails; the failure propagates.
        """
        self._ensure_started()
        storage = self._storage
        try:
            storage.write(self._data)
        finally:
            try:
                storage.close()
            finally:
                self._status = SessionStatus.CLOSED
                self._data = {}

    commit = write_close

    def destroy(self) -> None:
        """Remove the record, clear state and queue the deletion cookie."""
        self._ensure_started()
        session_id = self._id
        try:
            self._storage.destroy()
        finally:
            self._status = SessionStatus.CLOSED
            self._data = {}
            self._id = None

        if self._options.use_cookies:
            self._drop_cookie()
        logger.info(f"Session destroyed: {Fault.hash_id(session_id)}")

    def abort(self) -> None:
        """Release the record without persisting. No-op unless started."""
        if self._status is not SessionStatus.STARTED:
            return
        try:
            self._storage.close()
        finally:
            self._status = SessionStatus.CLOSED
            self._data = {}

    def get_cookie_headers(self) -> list[tuple[str, str]]:
        """Queued ``Set-Cookie`` pairs (empty until a cookie is issued)."""
        return [tuple(header) for header in self._jar.headers()]

    # ========================================================================
    # State access (STARTED only)
    # ========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        self._ensure_started()
        self._check_key(key)
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._ensure_started()
        self._check_key(key)
        self._data[key] = value

    def has(self, key: str) -> bool:
        self._ensure_started()
        self._check_key(key)
        return key in self._data

    def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        self._ensure_started()
        self._check_key(key)
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        self._ensure_started()
        return list(self._data)

    def clear(self) -> None:
        self._ensure_started()
        self._data.clear()

    def to_dict(self) -> dict[str, Any]:
        """Shallow copy of the current state."""
        self._ensure_started()
        return dict(self._data)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __getitem__(self, key: str) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: str) -> None:
        self.delete(key)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    # ========================================================================
    # Context manager
    # ========================================================================

    def __enter__(self) -> SessionEngine:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            if self.is_started:
                if exc_type is None:
                    self.write_close()
                else:
                    try:
                        self.write_close()
                    except Exception as e:
                        logger.error(f"Failed to commit session after error: {e}")
        finally:
            self.abort()
        return False

    # ========================================================================
    # Internals
    # ========================================================================

    def _resolve_id(self) -> Optional[str]:
        if self._explicit_id is not None:
            return self._explicit_id

        options = self._options
        cookie_id = self._jar.get(options.cookie_name) if options.use_cookies else None
        query_id = None if options.use_only_cookies else self._query.get(options.cookie_name)

        if cookie_id and query_id and cookie_id != query_id:
            raise SessionIdConflictFault(cookie_id, query_id)

        return cookie_id or query_id or None

    def _maybe_collect(self, storage: SessionStorage) -> None:
        if not self._options.should_collect():
            return
        try:
            removed = storage.gc(self._options.gc_maxlifetime)
        except OSError as e:
            logger.warning(f"Session GC failed: {e}")
            return
        logger.debug(f"Session GC removed {removed} records")

    def _issue_cookie(self) -> None:
        options = self._options
        self._jar.set_cookie(
            options.cookie_name,
            self._id,
            options.cookie_expiry(),
            options.cookie_path,
            options.cookie_domain,
            options.cookie_secure,
            options.cookie_httponly,
        )

    def _drop_cookie(self) -> None:
        options = self._options
        self._jar.set_cookie(
            options.cookie_name,
            "",
            0,
            options.cookie_path,
            options.cookie_domain,
            options.cookie_secure,
            options.cookie_httponly,
        )

    def _ensure_unstarted(self) -> None:
        if self._status is not SessionStatus.UNSTARTED:
            raise SessionAlreadyStartedFault()

    def _ensure_started(self) -> None:
        if self._status is not SessionStatus.STARTED:
            raise SessionNotStartedFault()

    @staticmethod
    def _check_key(key: object) -> None:
        if not isinstance(key, str):
            raise TypeError(f"Session keys must be str, not {type(key).__name__}")
