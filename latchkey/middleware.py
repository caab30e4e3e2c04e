"""
Session Middleware - Integrates SessionEngine with the ASGI request lifecycle.

This middleware orchestrates the complete session lifecycle:
1. Build one engine per HTTP request from the scope (cookies, query, peer)
2. Start it (lock + load) and expose it as ``scope["session"]``
3. Commit it when the response starts and merge its Set-Cookie header
4. Commit or release it on every other exit path

Engine operations block on file locks, so they run in the default executor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, MutableMapping, Optional

from latchkey.sessions import (
    SessionEngine,
    SessionIdConflictFault,
    SessionInvalidFault,
    SessionOptions,
    SessionStorage,
)
from latchkey.sessions.faults import SessionContextFault

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]


class SessionMiddleware:
    """
    ASGI middleware that gives every HTTP request a session.

    Architecture:
        Request -> SessionMiddleware -> [start] -> App -> [commit + cookie] -> Response

    The session is released exactly once: committed when the response
    starts, or committed best-effort and released when the app returns or
    raises without starting a response.

    Example:
        >>> options = SessionOptions(save_path="/var/lib/app/sessions", cookie_httponly=True)
        >>> app = SessionMiddleware(app, options)
        >>> # inside the app:
        >>> scope["session"].set("user_id", 42)
    """

    def __init__(
        self,
        app: ASGIApp,
        options: Optional[SessionOptions] = None,
        *,
        storage_factory: Optional[Callable[[SessionOptions], SessionStorage]] = None,
        scope_key: str = "session",
        auto_start: bool = True,
        reset_on_invalid: bool = True,
    ):
        """
        Initialize session middleware.

        Args:
            app: Downstream ASGI application
            options: Session options shared by all requests
            storage_factory: Builds the storage for each request
                (defaults to the configured backend)
            scope_key: Scope key the engine is stored under
            auto_start: Start the session before calling the app
            reset_on_invalid: Start a fresh session instead of failing when
                the inbound id is malformed or ambiguous
        """
        self.app = app
        self.options = options or SessionOptions()
        self.storage_factory = storage_factory
        self.scope_key = scope_key
        self.auto_start = auto_start
        self.reset_on_invalid = reset_on_invalid
        self.logger = logging.getLogger("latchkey.middleware")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if self.scope_key in scope:
            raise SessionContextFault(self.scope_key)

        loop = asyncio.get_running_loop()
        engine = self._build_engine(scope)

        async def send_with_session(message: Message) -> None:
            if message["type"] == "http.response.start":
                if engine.is_started:
                    await self._settle(loop, engine.write_close)

                cookie_headers = engine.get_cookie_headers()
                if cookie_headers:
                    headers = list(message.get("headers", []))
                    for name, value in cookie_headers:
                        headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))
                    message = {**message, "headers": headers}

            await send(message)

        try:
            if self.auto_start:
                engine = await self._start(loop, scope, engine)
            scope[self.scope_key] = engine
            await self.app(scope, receive, send_with_session)
        finally:
            if engine.is_started:
                try:
                    await self._settle(loop, engine.write_close)
                except Exception as e:
                    self.logger.error(f"Session commit failed: {e}", exc_info=True)
                finally:
                    engine.abort()

    def _build_engine(self, scope: Scope, ignore_inbound: bool = False) -> SessionEngine:
        storage = self.storage_factory(self.options) if self.storage_factory else None
        return SessionEngine.from_scope(
            scope, self.options, storage=storage, ignore_inbound=ignore_inbound,
        )

    async def _start(
        self,
        loop: asyncio.AbstractEventLoop,
        scope: Scope,
        engine: SessionEngine,
    ) -> SessionEngine:
        try:
            await self._settle(loop, engine.start)
        except (SessionInvalidFault, SessionIdConflictFault) as e:
            if not self.reset_on_invalid:
                raise
            self.logger.warning(f"Discarding inbound session id: {e}")
            fresh = self._build_engine(scope, ignore_inbound=True)
            try:
                await self._settle(loop, fresh.start)
            except asyncio.CancelledError:
                # Never handed back to __call__, so release it here
                fresh.abort()
                raise
            return fresh
        return engine

    async def _settle(self, loop: asyncio.AbstractEventLoop, call: Callable[[], Any]) -> Any:
        """
        Run a blocking engine call in the executor.

        Cancelling the request does not stop the worker thread, so on
        cancellation the call is waited for before ``CancelledError``
        propagates. Cleanup then never runs next to a call that still owns
        the storage.
        """
        future = loop.run_in_executor(None, call)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            while not future.done():
                try:
                    await asyncio.wait({future})
                except asyncio.CancelledError:
                    continue
            if not future.cancelled() and future.exception() is not None:
                self.logger.warning(
                    f"Session call failed after request was cancelled: {future.exception()}"
                )
            raise
