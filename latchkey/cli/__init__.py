"""
Latchkey CLI - Session store maintenance.

Usage:
    latchkey gc [--max-lifetime N]
    latchkey show <session-id>
    latchkey config [--json]
"""

__version__ = "0.1.0"
__cli_name__ = "latchkey"
