"""
Cookie codec - Inbound ``Cookie`` parsing and ``Set-Cookie`` synthesis.

Rendering is byte-exact: browsers and fixtures depend on the field order
``name=value; expires; path; domain; secure; httponly`` and on the expiry
format ``Dow, DD-Mon-YYYY HH:MM:SS GMT``.

Parsing is lenient and never raises: a missing or malformed header is a
normal request, not an error.
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Mapping
from typing import NamedTuple, Optional
from urllib.parse import quote_plus, unquote_plus

from latchkey.faults.core import Fault, FaultDomain, Severity

# Characters refused in cookie names; values drop '=' from the set.
INVALID_NAME_CHARS = "=,; \t\r\n\013\014"
INVALID_VALUE_CHARS = ",; \t\r\n\013\014"

# Deleted cookies expire one year (plus a second) in the past.
DELETION_OFFSET = 31536001
DELETED_VALUE = "deleted"

_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    None, "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


# ============================================================================
# Faults
# ============================================================================

class CookieFault(Fault):
    """Cookie refused before it reaches a response."""

    domain = FaultDomain.SECURITY
    severity = Severity.ERROR
    public = False
    retryable = False


class CookieNameInvalidFault(CookieFault):
    """Cookie name contains a forbidden character."""

    code = "COOKIE_NAME_INVALID"
    message = "Cookie names can not contain any of the following: '=,; \\t\\r\\n\\013\\014'"

    def __init__(self, name: str, **kwargs):
        super().__init__(**kwargs)
        self.name = name


class CookieValueInvalidFault(CookieFault):
    """Raw cookie value contains a forbidden character."""

    code = "COOKIE_VALUE_INVALID"
    message = "Cookie values can not contain any of the following: ',; \\t\\r\\n\\013\\014'"


class CookieHeader(NamedTuple):
    """A single ``Set-Cookie`` response header."""

    name: str
    value: str


# ============================================================================
# Parsing
# ============================================================================

def parse_cookies(raw: Optional[str]) -> dict[str, str]:
    """
    Parse a raw ``Cookie`` header into a name -> value mapping.

    Pairs are separated by ``"; "`` and split on the first ``"="``;
    values are percent-decoded. Pairs without ``=`` or with an empty
    name are skipped.

    Args:
        raw: Header value, or None when the request carried no cookies

    Returns:
        Dict of cookie name -> decoded value (empty on missing header)
    """
    cookies: dict[str, str] = {}
    if not raw or not isinstance(raw, str):
        return cookies

    for pair in raw.split("; "):
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        cookies[name] = unquote_plus(value)

    return cookies


# ============================================================================
# Rendering
# ============================================================================

def format_cookie_date(timestamp: float) -> str:
    """
    Format an epoch timestamp as a cookie expiry date.

    Day and month names are fixed English abbreviations so the output
    does not depend on the process locale.
    """
    tm = time.gmtime(int(timestamp))
    return "%s, %02d-%s-%04d %02d:%02d:%02d GMT" % (
        _WEEKDAYS[tm.tm_wday], tm.tm_mday, _MONTHS[tm.tm_mon], tm.tm_year,
        tm.tm_hour, tm.tm_min, tm.tm_sec,
    )


def _contains_any(value: str, chars: str) -> bool:
    return any(c in value for c in chars)


def render_cookie(
    name: str,
    value: Optional[str],
    expires: float = 0,
    path: Optional[str] = None,
    domain: Optional[str] = None,
    secure: bool = False,
    httponly: bool = False,
    raw: bool = False,
    *,
    now: Optional[float] = None,
) -> str:
    """
    Render a ``Set-Cookie`` header value.

    Args:
        name: Cookie name
        value: Cookie value; empty or None deletes the cookie
        expires: Expiry as epoch seconds; ``<= 0`` means session cookie
        path: Cookie path (omitted when None)
        domain: Cookie domain (omitted when None)
        secure: Append the ``secure`` flag
        httponly: Append the ``httponly`` flag
        raw: Send the value verbatim instead of percent-encoding it
        now: Clock override used for the deletion expiry

    Returns:
        Header value string

    Raises:
        CookieNameInvalidFault: Name contains ``= , ; SP TAB CR LF VT FF``
        CookieValueInvalidFault: Raw value contains ``, ; SP TAB CR LF VT FF``
    """
    if _contains_any(name, INVALID_NAME_CHARS):
        raise CookieNameInvalidFault(name)

    if raw and value and _contains_any(value, INVALID_VALUE_CHARS):
        raise CookieValueInvalidFault()

    parts = []
    if not value:
        if now is None:
            now = time.time()
        parts.append(f"{name}={DELETED_VALUE}")
        parts.append(f"expires={format_cookie_date(now - DELETION_OFFSET)}")
    else:
        encoded = value if raw else quote_plus(value, safe="")
        parts.append(f"{name}={encoded}")
        if expires > 0:
            parts.append(f"expires={format_cookie_date(expires)}")

    if path is not None:
        parts.append(f"path={path}")

    if domain is not None:
        parts.append(f"domain={domain}")

    if secure is True:
        parts.append("secure")

    if httponly is True:
        parts.append("httponly")

    return "; ".join(parts)


def set_cookie_header(
    name: str,
    value: Optional[str],
    expires: float = 0,
    path: Optional[str] = None,
    domain: Optional[str] = None,
    secure: bool = False,
    httponly: bool = False,
    raw: bool = False,
    *,
    now: Optional[float] = None,
) -> CookieHeader:
    """Render a cookie and wrap it as a ``Set-Cookie`` header pair."""
    return CookieHeader(
        "Set-Cookie",
        render_cookie(
            name, value, expires, path, domain, secure, httponly, raw, now=now,
        ),
    )


# ============================================================================
# CookieJar
# ============================================================================

class CookieJar(Mapping[str, str]):
    """
    Read-only view of the request cookies plus queued ``Set-Cookie`` headers.

    Setting a cookie updates the value seen by later lookups in the same
    request and queues one header per cookie name; setting the same name
    again replaces the queued header.

    Example:
        >>> jar = CookieJar("SESSID=abc; theme=dark")
        >>> jar["theme"]
        'dark'
        >>> jar.set_cookie("SESSID", "", path="/")
        >>> jar.headers()[0].value.startswith("SESSID=deleted")
        True
    """

    def __init__(self, cookies: str | Mapping[str, str] | None = None):
        if cookies is None or isinstance(cookies, str):
            self._cookies = parse_cookies(cookies)
        else:
            self._cookies = dict(cookies)
        self._headers: dict[str, CookieHeader] = {}

    def __getitem__(self, name: str) -> str:
        return self._cookies[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cookies)

    def __len__(self) -> int:
        return len(self._cookies)

    def __setitem__(self, name, value):
        raise TypeError("CookieJar is read-only; use set_cookie()")

    def __delitem__(self, name):
        raise TypeError("CookieJar is read-only; use set_cookie(name, '')")

    def __repr__(self) -> str:
        return f"CookieJar({sorted(self._cookies)!r})"

    def set_cookie(
        self,
        name: str,
        value: Optional[str],
        expires: float = 0,
        path: Optional[str] = None,
        domain: Optional[str] = None,
        secure: bool = False,
        httponly: bool = False,
        *,
        now: Optional[float] = None,
    ) -> None:
        """Queue a percent-encoded cookie."""
        self._queue(name, value, expires, path, domain, secure, httponly, False, now)

    def set_raw_cookie(
        self,
        name: str,
        value: Optional[str],
        expires: float = 0,
        path: Optional[str] = None,
        domain: Optional[str] = None,
        secure: bool = False,
        httponly: bool = False,
        *,
        now: Optional[float] = None,
    ) -> None:
        """Queue a cookie whose value is sent verbatim."""
        self._queue(name, value, expires, path, domain, secure, httponly, True, now)

    def _queue(self, name, value, expires, path, domain, secure, httponly, raw, now) -> None:
        header = set_cookie_header(
            name, value, expires, path, domain, secure, httponly, raw, now=now,
        )
        # Re-insert so the header order follows the latest call
        self._headers.pop(name, None)
        self._headers[name] = header
        if value:
            self._cookies[name] = value
        else:
            self._cookies.pop(name, None)

    def headers(self) -> list[CookieHeader]:
        """Queued ``Set-Cookie`` headers in call order."""
        return list(self._headers.values())
