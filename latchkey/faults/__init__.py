"""
LatchkeyFaults - Structured fault handling.

Errors in Latchkey are typed fault signals: each carries a stable code,
a domain, a severity and retry semantics, so the pipeline adapter can decide
how to react without string matching.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain taxonomy
- Severity: Severity levels
"""

from .core import (
    DOMAIN_DEFAULTS,
    Fault,
    FaultDomain,
    Severity,
)

__all__ = [
    "DOMAIN_DEFAULTS",
    "Fault",
    "FaultDomain",
    "Severity",
]
