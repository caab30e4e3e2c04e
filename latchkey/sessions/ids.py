"""
LatchkeySessions - Session identifiers.

Ids are hex digests, so they always satisfy the id grammar
``[A-Za-z0-9,-]+``. The grammar check guards every id that arrives from
the client before it is used as a file or key name.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
import socket
import time
from typing import Callable, Optional

from .faults import SessionConfigFault, SessionIdExhaustedFault
from .policy import PeerInfo

logger = logging.getLogger("latchkey.sessions.ids")

ID_PATTERN = re.compile(r"[A-Za-z0-9,-]+")


def is_valid_id(session_id: object) -> bool:
    """Check an untrusted id against the id grammar."""
    return isinstance(session_id, str) and ID_PATTERN.fullmatch(session_id) is not None


class IdentifierGenerator:
    """
    Produces candidate session ids.

    A candidate mixes host name, a nanosecond clock, the remote peer and a
    random salt, then hashes the lot. Candidates are not guaranteed
    unique; ``free_id`` pairs them with a storage freeness check.

    Example:
        >>> gen = IdentifierGenerator()
        >>> sid = gen.free_id(lambda candidate: True)
        >>> is_valid_id(sid)
        True
    """

    def __init__(self, hash_algorithm: str = "sha1", max_attempts: int = 100):
        try:
            digest_size = hashlib.new(hash_algorithm).digest_size
        except (TypeError, ValueError):
            raise SessionConfigFault("hash_algorithm", f"unsupported algorithm {hash_algorithm!r}") from None
        if digest_size == 0:
            # shake_* need an explicit length, which ids do not carry
            raise SessionConfigFault("hash_algorithm", f"variable-length digest {hash_algorithm!r} not supported")
        self.hash_algorithm = hash_algorithm
        self.max_attempts = max_attempts
        self._host = socket.gethostname()

    def generate(self, peer: Optional[PeerInfo] = None) -> str:
        """Produce one candidate id."""
        material = "".join((
            self._host,
            str(time.time_ns()),
            peer.fingerprint() if peer else "",
            secrets.token_hex(16),
        ))
        return hashlib.new(self.hash_algorithm, material.encode()).hexdigest()

    def free_id(
        self,
        is_free: Callable[[str], bool],
        peer: Optional[PeerInfo] = None,
    ) -> str:
        """
        Generate candidates until ``is_free`` accepts one.

        Args:
            is_free: Storage check; may reserve the id as a side effect
            peer: Remote peer identity

        Returns:
            A session id the storage reported as free

        Raises:
            SessionIdExhaustedFault: No free id within ``max_attempts``
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.generate(peer)
            if is_free(candidate):
                if attempt > 1:
                    logger.debug(f"Found free session id after {attempt} attempts")
                return candidate

        logger.error(f"Gave up minting a session id after {self.max_attempts} attempts")
        raise SessionIdExhaustedFault(self.max_attempts)
