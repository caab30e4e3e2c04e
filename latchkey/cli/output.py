"""
Latchkey CLI - Styled output.

Thin wrappers over ``click.style`` so every command reports the same way.
"""

from __future__ import annotations

import click

_CHECK = "✓"
_CROSS = "✗"


def success(message: str) -> None:
    click.echo(click.style(message, fg="green"))


def info(message: str) -> None:
    click.echo(click.style(message, fg="cyan"))


def error(message: str) -> None:
    """Failures go to stderr."""
    click.echo(click.style(message, fg="red"), err=True)


def kv(key: str, value: object, *, width: int = 20, indent: int = 2) -> None:
    """
    Print one aligned ``key: value`` row.

        cookie_name:        SESSID
    """
    label = click.style(f"{key}:".ljust(width), fg="white")
    click.echo(" " * indent + label + click.style(str(value), fg="cyan"))
