"""
Faults: base Fault, domains and the session fault taxonomy.
"""

import pytest

from latchkey.faults.core import DOMAIN_DEFAULTS, Fault, FaultDomain, Severity
from latchkey.sessions.faults import (
    SessionAlreadyStartedFault,
    SessionConfigFault,
    SessionContextFault,
    SessionIdConflictFault,
    SessionInvalidFault,
    SessionLifecycleFault,
    SessionNotFoundFault,
    SessionNotStartedFault,
    SessionSerializationFault,
    SessionStorageFault,
    SessionStoreCorruptedFault,
    SessionStoreIOFault,
    SessionStoreUnavailableFault,
    SessionValidationFault,
    StorageAlreadyOpenFault,
    StorageNotOpenFault,
)


# ============================================================================
# Severity
# ============================================================================

class TestSeverity:

    def test_values(self):
        assert Severity.INFO == "info"
        assert Severity.WARN == "warn"
        assert Severity.ERROR == "error"
        assert Severity.FATAL == "fatal"


# ============================================================================
# FaultDomain
# ============================================================================

class TestFaultDomain:

    def test_standard_domains(self):
        assert FaultDomain.CONFIG.value == "config"
        assert FaultDomain.SESSION.value == "session"
        assert FaultDomain.SECURITY.value == "security"
        assert FaultDomain.IO.value == "io"

    def test_domain_equality(self):
        assert FaultDomain("io") is FaultDomain.IO
        assert FaultDomain.IO == "io"
        assert FaultDomain.IO != FaultDomain.CONFIG

    def test_domain_defaults(self):
        assert DOMAIN_DEFAULTS[FaultDomain.SESSION]["severity"] is Severity.FATAL
        assert set(DOMAIN_DEFAULTS) == set(FaultDomain)

    def test_domain_given_as_string(self):
        fault = Fault("X", "m", domain="io")
        assert fault.domain is FaultDomain.IO
        assert fault.severity is Severity.ERROR


# ============================================================================
# Fault
# ============================================================================

class TestFault:

    def test_explicit_fields(self):
        fault = Fault(code="X", message="boom", domain=FaultDomain.IO, severity=Severity.WARN)
        assert fault.code == "X"
        assert fault.severity is Severity.WARN
        assert fault.retryable is False
        assert fault.public is False
        assert str(fault) == "[X] boom"

    def test_domain_default_severity(self):
        fault = Fault(code="X", message="m", domain=FaultDomain.CONFIG)
        assert fault.severity is Severity.FATAL

    def test_missing_fields(self):
        with pytest.raises(TypeError):
            Fault(message="no code", domain=FaultDomain.IO)

    def test_to_dict(self):
        fault = Fault("X", "m", domain=FaultDomain.IO, metadata={"k": 1})
        assert fault.to_dict() == {
            "code": "X",
            "message": "m",
            "domain": "io",
            "severity": "error",
            "retryable": False,
            "public": False,
            "metadata": {"k": 1},
        }

    def test_hash_id(self):
        hashed = Fault.hash_id("abc")
        assert hashed.startswith("sha256:")
        assert len(hashed) == len("sha256:") + 16
        assert "abc" not in hashed
        assert hashed == Fault.hash_id("abc")

    def test_is_exception(self):
        with pytest.raises(Fault):
            raise Fault("X", "m", domain=FaultDomain.IO)


# ============================================================================
# Session faults
# ============================================================================

class TestSessionFaults:

    @pytest.mark.parametrize("fault_cls", [
        SessionNotStartedFault,
        SessionAlreadyStartedFault,
        StorageNotOpenFault,
        StorageAlreadyOpenFault,
    ])
    def test_lifecycle_faults_are_fatal(self, fault_cls):
        fault = fault_cls()
        assert isinstance(fault, SessionLifecycleFault)
        assert fault.domain == FaultDomain.SESSION
        assert fault.severity is Severity.FATAL
        assert fault.retryable is False

    def test_validation_faults(self):
        fault = SessionInvalidFault("../etc/passwd")
        assert isinstance(fault, SessionValidationFault)
        assert fault.domain == FaultDomain.SECURITY
        assert fault.public is True
        assert fault.session_id_hash == Fault.hash_id("../etc/passwd")

    def test_invalid_fault_with_non_string(self):
        assert SessionInvalidFault(42).session_id_hash is None

    def test_conflict_fault_hashes_ids(self):
        fault = SessionIdConflictFault("aaa", "bbb")
        assert fault.code == "SESSION_ID_CONFLICT"
        assert "aaa" not in str(fault.to_dict())
        assert fault.cookie_id_hash == Fault.hash_id("aaa")
        assert fault.query_id_hash == Fault.hash_id("bbb")

    @pytest.mark.parametrize("fault", [
        SessionStoreUnavailableFault("file", "no such directory"),
        SessionStoreIOFault("file", "disk full"),
        SessionSerializationFault("bad key"),
        SessionStoreCorruptedFault(),
        SessionNotFoundFault(),
    ])
    def test_storage_faults(self, fault):
        assert isinstance(fault, SessionStorageFault)
        assert fault.domain == FaultDomain.IO
        assert fault.public is False

    def test_not_found_is_a_warning(self):
        assert SessionNotFoundFault().severity is Severity.WARN

    def test_messages_carry_context(self):
        assert "disk full" in SessionStoreIOFault("file", "disk full").message
        assert "'session'" in SessionContextFault("session").message
        assert SessionStoreUnavailableFault("file").message == "Session store 'file' unavailable"

    def test_config_fault(self):
        fault = SessionConfigFault("gc_divisor", "must be >= 1")
        assert fault.domain == FaultDomain.CONFIG
        assert fault.option == "gc_divisor"
        assert "gc_divisor" in str(fault)
