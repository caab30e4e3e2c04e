"""Latchkey CLI - Main Entry Point.

The `latchkey` command maintains the session store of a deployment.

Commands:
    gc      - Remove expired session records
    show    - Print one session record
    config  - Show resolved session options
"""

import logging
import sys
from typing import Optional

import click

from latchkey.config import ConfigError, ConfigLoader
from latchkey.faults import Fault
from latchkey.sessions import SessionOptions

from . import __cli_name__, __version__
from .output import _CROSS, error


def _resolve_options(ctx: click.Context) -> SessionOptions:
    """Load configuration once per invocation."""
    if "options" not in ctx.obj:
        overrides = {}
        if ctx.obj["save_path"]:
            overrides = {"session": {"save_path": ctx.obj["save_path"]}}

        loader = ConfigLoader.load(
            paths=list(ctx.obj["config_paths"]),
            env_file=ctx.obj["env_file"],
            overrides=overrides,
        )
        ctx.obj["options"] = loader.session_options()
    return ctx.obj["options"]


@click.group()
@click.version_option(version=__version__, prog_name=__cli_name__)
@click.option("--config", "-c", "config_paths", multiple=True, help="Config file (YAML/JSON), repeatable")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Path to .env file")
@click.option("--save-path", type=click.Path(file_okay=False), help="Override the session directory")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Minimal output")
@click.pass_context
def cli(ctx, config_paths, env_file: Optional[str], save_path: Optional[str], verbose: bool, quiet: bool):
    """Session store maintenance.

    \b
    Quick start:
      latchkey config
      latchkey gc --max-lifetime 3600
      latchkey show <session-id>
    """
    ctx.ensure_object(dict)
    ctx.obj["config_paths"] = config_paths
    ctx.obj["env_file"] = env_file
    ctx.obj["save_path"] = save_path
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


# ============================================================================
# Commands
# ============================================================================

@cli.command("gc")
@click.option("--max-lifetime", type=click.IntRange(min=0), help="Seconds before a record is garbage")
@click.pass_context
def gc(ctx, max_lifetime: Optional[int]):
    """Remove expired session records."""
    from .commands.sessions import cmd_gc

    try:
        cmd_gc(_resolve_options(ctx), max_lifetime=max_lifetime, quiet=ctx.obj["quiet"])
    except (Fault, ConfigError, OSError) as e:
        error(f"  {_CROSS} Garbage collection failed: {e}")
        sys.exit(1)


@cli.command("show")
@click.argument("session_id")
@click.pass_context
def show(ctx, session_id: str):
    """Print one session record as JSON."""
    from .commands.sessions import cmd_show

    try:
        cmd_show(_resolve_options(ctx), session_id)
    except (Fault, ConfigError) as e:
        error(f"  {_CROSS} {e}")
        sys.exit(1)


@cli.command("config")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def config(ctx, as_json: bool):
    """Show resolved session options."""
    from .commands.sessions import cmd_config

    try:
        cmd_config(_resolve_options(ctx), as_json=as_json)
    except ConfigError as e:
        error(f"  {_CROSS} Invalid configuration: {e}")
        sys.exit(1)


def main():
    """Entry point for `latchkey` command."""
    cli(obj={})


if __name__ == "__main__":
    main()
