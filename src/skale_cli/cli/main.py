# src/skale_cli/cli/main.py

"""
CLI entrypoint.

Builds Settings once (environment + command-line overrides), initializes
logging, then runs one command coroutine to completion. Any SkaleError ends
the process with status 1.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import click

from .. import __version__
from ..config import get_settings
from ..errors import SkaleError
from ..logging_setup import setup_logging
from . import commands
from .commands import CommandContext

logger = logging.getLogger(__name__)


def _execute(ctx: click.Context, coro: Coroutine[Any, Any, int]) -> None:
    try:
        code = asyncio.run(coro)
    except SkaleError as e:
        logger.debug("Command failed", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        ctx.exit(130)
    except Exception as e:
        logger.exception("Unexpected failure")
        click.echo(f"Error: {e!r}", err=True)
        ctx.exit(1)
    ctx.exit(code or 0)


@click.group()
@click.version_option(version=__version__, prog_name="skale")
@click.option("-c", "--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Config file (default: $SKALE_CONFIG or ~/.skalerc).")
@click.option("-H", "--host", default=None, help="Coordination service host.")
@click.option("-p", "--port", type=int, default=None, help="Coordination service port.")
@click.option("--ssl/--no-ssl", default=None, help="Use TLS for the service connection.")
@click.option("-k", "--token", default=None, help="Session token.")
@click.option("-d", "--debug", is_flag=True, help="Log debug output to the console.")
@click.pass_context
def cli(
        ctx: click.Context,
        config_path: Path | None,
        host: str | None,
        port: int | None,
        ssl: bool | None,
        token: str | None,
        debug: bool,
) -> None:
    """Create, run and deploy clustered skale applications, locally or in the cloud."""
    settings = get_settings().with_overrides(
        config_path=config_path.expanduser() if config_path else None,
        host=host,
        port=port,
        ssl=ssl,
        token=token,
        log_level="DEBUG" if debug else None,
    )

    console_level = getattr(logging, settings.log_level.upper(), logging.WARNING)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)
    logger.debug("skale %s, config %s", __version__, settings.config_path)

    ctx.obj = CommandContext(settings=settings)


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Write the config file with the current host/port/ssl/token."""
    _execute(ctx, commands.cmd_init(ctx.obj))


@cli.command()
@click.pass_context
def deploy(ctx: click.Context) -> None:
    """Register (if needed), push and deploy the application in the current directory."""
    _execute(ctx, commands.cmd_deploy(ctx.obj))


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("-r", "--remote", is_flag=True, help="Run in the cloud instead of locally.")
@click.option("--force", is_flag=True, help="Run remotely even if local sources are not deployed.")
@click.option("--reset", is_flag=True, help="Restart the local cluster and its log.")
@click.option("-w", "--worker", "workers", type=click.IntRange(min=1), default=2, show_default=True,
              help="Number of local workers.")
@click.option("-m", "--memory", "memory_mb", type=click.IntRange(min=1), default=4000, show_default=True,
              help="Memory limit per local worker (MB).")
@click.option("-f", "--file", "file", default=None, help="Program to run (default: <package name>.js).")
@click.pass_context
def run(
        ctx: click.Context,
        args: tuple[str, ...],
        remote: bool,
        force: bool,
        reset: bool,
        workers: int,
        memory_mb: int,
        file: str | None,
) -> None:
    """Run the application, on the local cluster or remotely (-r)."""
    if remote:
        _execute(ctx, commands.cmd_run_remote(ctx.obj, args, force=force))
    else:
        _execute(
            ctx,
            commands.cmd_run_local(ctx.obj, args, workers=workers, memory_mb=memory_mb, file=file, reset=reset),
        )


@cli.command()
@click.argument("name", required=False)
@click.pass_context
def attach(ctx: click.Context, name: str | None) -> None:
    """Follow the output of a running remote application."""
    _execute(ctx, commands.cmd_attach(ctx.obj, name))


@cli.command()
@click.argument("name", required=False)
@click.pass_context
def log(ctx: click.Context, name: str | None) -> None:
    """Print the output of the last remote run."""
    _execute(ctx, commands.cmd_log(ctx.obj, name))


@cli.command("list")
@click.pass_context
def list_(ctx: click.Context) -> None:
    """List deployed applications."""
    _execute(ctx, commands.cmd_list(ctx.obj))


@cli.command()
@click.argument("name", required=False)
@click.pass_context
def status(ctx: click.Context, name: str | None) -> None:
    """Local cluster processes, or the status of remote application NAME."""
    _execute(ctx, commands.cmd_status(ctx.obj, name))


@cli.command()
@click.argument("name", required=False)
@click.option("--force", is_flag=True, help="Reset even if the application is busy.")
@click.pass_context
def stop(ctx: click.Context, name: str | None, force: bool) -> None:
    """Stop the local cluster, or reset remote application NAME."""
    _execute(ctx, commands.cmd_stop(ctx.obj, name, force=force))


def main() -> None:
    cli(prog_name="skale")


if __name__ == "__main__":
    main()
