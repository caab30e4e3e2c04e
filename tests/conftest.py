"""
Shared test fixtures and helpers for the Latchkey test suite.
"""

from typing import List, Optional

import pytest

from latchkey.sessions import MemoryStorage, MemoryVault, SessionOptions


# ============================================================================
# ASGI Helpers
# ============================================================================


def make_scope(
    method: str = "GET",
    path: str = "/",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    client: Optional[tuple] = None,
    type: str = "http",
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    if headers:
        for name, value in headers:
            raw_headers.append(
                (name.encode("latin-1") if isinstance(name, str) else name,
                 value.encode("latin-1") if isinstance(value, str) else value)
            )
    return {
        "type": type,
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string.encode("utf-8"),
        "headers": raw_headers,
        "scheme": "http",
        "server": ("127.0.0.1", 8000),
        "client": client or ("127.0.0.1", 12345),
        "root_path": "",
    }


def make_receive(body: bytes = b""):
    """Create an ASGI receive callable returning one request message."""
    messages = [{"type": "http.request", "body": body, "more_body": False}]

    async def receive():
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    return receive


# ============================================================================
# Options / Storage fixtures
# ============================================================================


@pytest.fixture
def session_dir(tmp_path):
    """Empty directory for file-backed records."""
    path = tmp_path / "sessions"
    path.mkdir()
    return path


@pytest.fixture
def file_options(session_dir):
    """File-backed options with probabilistic GC disabled."""
    return SessionOptions(save_path=str(session_dir), gc_probability=0)


@pytest.fixture
def vault():
    """Private vault so memory-backed tests never share records."""
    return MemoryVault()


@pytest.fixture
def memory_options(vault):
    """Memory-backed options bound to the private vault."""
    return SessionOptions(
        storage_backend=lambda options: MemoryStorage(options, vault=vault),
        gc_probability=0,
    )
