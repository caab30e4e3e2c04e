"""
Session store commands - ``latchkey gc``, ``latchkey show``, ``latchkey config``.

Commands operate on the file store configured by the resolved options,
so they can run from cron or a shell next to the application.
"""

from __future__ import annotations

import json
from typing import Optional

import click

from latchkey.sessions import FileStorage, SessionOptions
from latchkey.sessions.faults import SessionNotFoundFault

from ..output import _CHECK, info, kv, success


def _file_storage(options: SessionOptions) -> FileStorage:
    if options.storage_backend not in ("file", FileStorage):
        info(f"  Backend '{options.to_dict()['storage_backend']}' configured; using the file store")
    return FileStorage(options)


def cmd_gc(
    options: SessionOptions,
    max_lifetime: Optional[int] = None,
    quiet: bool = False,
) -> int:
    """Sweep expired records from the file store."""
    storage = _file_storage(options)
    lifetime = options.gc_maxlifetime if max_lifetime is None else max_lifetime
    removed = storage.gc(lifetime)

    if not quiet:
        success(f"  {_CHECK} Removed {removed} expired session(s)")
        kv("Save path", str(storage.save_path))
        kv("Max lifetime", f"{lifetime}s")
    return removed


def cmd_show(options: SessionOptions, session_id: str) -> dict:
    """
    Print one record as JSON.

    The record is read under its lock, so the output is never a partial
    write.

    Raises:
        SessionInvalidFault: Id fails the id grammar
        SessionNotFoundFault: No record for the id
    """
    storage = _file_storage(options)
    if not storage.exists(session_id):
        raise SessionNotFoundFault(message=f"No session record for id '{session_id}'")

    with storage:
        storage.open(session_id)
        data = storage.read()

    click.echo(json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True))
    return data


def cmd_config(options: SessionOptions, as_json: bool = False) -> None:
    """Print the resolved session options."""
    data = options.to_dict()

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(click.style("Session Options", fg="cyan", bold=True))
    click.echo("─" * 40)
    for key, value in data.items():
        kv(key, value)
