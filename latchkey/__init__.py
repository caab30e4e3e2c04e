"""
Latchkey - Server-side HTTP sessions for ASGI applications

Complete integration of:
- Sessions: per-request engine with locked, file-backed records
- Cookies: byte-exact Set-Cookie rendering and lenient parsing
- Middleware: ASGI adapter that commits or releases every session
- Config: layered YAML/JSON/.env/environment configuration
- Faults: Structured error handling with fault domains
"""

__version__ = "0.1.0"

from .config import ConfigError, ConfigLoader
from .cookies import CookieHeader, CookieJar, parse_cookies, render_cookie
from .faults import Fault, FaultDomain, Severity
from .middleware import SessionMiddleware
from .sessions import (
    FileStorage,
    MemoryStorage,
    SessionEngine,
    SessionOptions,
    SessionStatus,
)

__all__ = [
    "__version__",
    "ConfigError",
    "ConfigLoader",
    "CookieHeader",
    "CookieJar",
    "parse_cookies",
    "render_cookie",
    "Fault",
    "FaultDomain",
    "Severity",
    "SessionMiddleware",
    "FileStorage",
    "MemoryStorage",
    "SessionEngine",
    "SessionOptions",
    "SessionStatus",
]
