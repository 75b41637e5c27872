# src/skale_cli/cli/commands.py

from __future__ import annotations

"""
Command implementations.

Each command is a coroutine returning the process exit status; failures are
raised as SkaleError and turned into status 1 by the entrypoint. Task output
goes to stdout, everything else to stderr.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import click

from ..config import Settings
from ..errors import NotFoundError, RemoteError, SkaleError
from ..remote.dispatcher import CommandDispatcher
from ..remote.models import TaskStatus
from ..remote.observer import observe_task, replay_log
from ..remote.session import RemoteSession
from . import sources
from .bootstrap import create_supervisor, load_credentials, open_session

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandContext:
    settings: Settings
    cwd: Path = field(default_factory=Path.cwd)
    # Session factory; tests swap it for one wired to a fake transport.
    open_session: Callable = open_session

    def out(self, line: str) -> None:
        click.echo(line)

    def note(self, line: str) -> None:
        click.echo(line, err=True)


def _exit_status(status: TaskStatus | None) -> int:
    return 0 if status is TaskStatus.OK else 1


async def _stream(ctx: CommandContext, session: RemoteSession, name: str, task_id: str, *, attach: bool) -> int:
    def on_terminal(status: TaskStatus) -> None:
        ctx.note(f"{name}: task {task_id} {status.value}")

    status = await observe_task(
        session,
        task_id,
        ctx.out,
        on_terminal,
        on_trace=lambda trace: logger.info("%s: %s", name, trace),
        attach=attach,
    )
    return _exit_status(status)


async def cmd_init(ctx: CommandContext) -> int:
    store, creds = load_credentials(ctx.settings, force_save=True)
    ctx.note(f"config written to {store.path} (host={creds.host} port={creds.port} ssl={creds.ssl})")
    return 0


async def cmd_deploy(ctx: CommandContext) -> int:
    name = sources.app_name(ctx.cwd)
    async with ctx.open_session(ctx.settings) as session:
        dispatcher = CommandDispatcher(session)
        app = await dispatcher.find_application(name)
        if app is None:
            ctx.note(f"registering application {name}")
            await dispatcher.add_application(name)
            app = await dispatcher.application(name)

        if app.url:
            ctx.note(f"pushing sources to {app.url}")
            sources.push(ctx.cwd, app.url)
        else:
            logger.warning("Application %s has no repository url, deploying without a push", name)

        await dispatcher.deploy(name)
    ctx.note(f"{name} deployed")
    return 0


async def cmd_run_remote(ctx: CommandContext, args: tuple[str, ...], *, force: bool = False) -> int:
    name = sources.app_name(ctx.cwd)
    async with ctx.open_session(ctx.settings) as session:
        dispatcher = CommandDispatcher(session)
        if not force:
            app = await dispatcher.application(name)
            sources.check_deployed(ctx.cwd, app)

        reply = await dispatcher.run(name, {"args": list(args)})
        if reply.already_started:
            raise SkaleError(f"{name} is already running, use `skale attach` to follow it")
        if reply.task_id is None:
            raise RemoteError({"error": "no-task", "reason": f"no task was started for {name}"})

        ctx.note(f"{name}: task {reply.task_id} started")
        return await _stream(ctx, session, name, reply.task_id, attach=False)


async def cmd_run_local(
        ctx: CommandContext,
        args: tuple[str, ...],
        *,
        workers: int,
        memory_mb: int,
        file: str | None = None,
        reset: bool = False,
) -> int:
    supervisor = create_supervisor(ctx.settings)
    if reset:
        supervisor.stop()
        supervisor.rotate_log()
    await supervisor.ensure_running(workers, memory_mb)

    cmd = [ctx.settings.app_runner, sources.app_file(ctx.cwd, file), *args]
    logger.info("Running %s", " ".join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(*cmd, cwd=ctx.cwd)
    except OSError as e:
        raise SkaleError(f"cannot run {cmd[0]}: {e}") from e
    return await proc.wait()


async def _current_task(dispatcher: CommandDispatcher, name: str) -> str:
    app = await dispatcher.application(name)
    if not app.task_id:
        raise NotFoundError(f"{name} has not been run yet")
    return app.task_id


async def cmd_attach(ctx: CommandContext, name: str | None = None) -> int:
    name = name or sources.app_name(ctx.cwd)
    async with ctx.open_session(ctx.settings) as session:
        task_id = await _current_task(CommandDispatcher(session), name)
        return await _stream(ctx, session, name, task_id, attach=True)


async def cmd_log(ctx: CommandContext, name: str | None = None) -> int:
    name = name or sources.app_name(ctx.cwd)
    async with ctx.open_session(ctx.settings) as session:
        task_id = await _current_task(CommandDispatcher(session), name)
        status = await replay_log(session, task_id, ctx.out)
    ctx.note(f"{name}: task {task_id} {status.value}")
    return 0


async def cmd_list(ctx: CommandContext) -> int:
    async with ctx.open_session(ctx.settings) as session:
        apps = await CommandDispatcher(session).list_applications()
    for app in apps:
        ctx.out(f"{app.name}\t{app.status or '-'}")
    return 0


async def cmd_status(ctx: CommandContext, name: str | None = None) -> int:
    if name is None:
        for line in create_supervisor(ctx.settings).status():
            ctx.out(line)
        return 0

    async with ctx.open_session(ctx.settings) as session:
        app = await CommandDispatcher(session).application(name)
    ctx.out(f"name:   {app.name}")
    ctx.out(f"status: {app.status or '-'}")
    ctx.out(f"commit: {app.commit or '-'}")
    ctx.out(f"task:   {app.task_id or '-'}")
    return 0


async def cmd_stop(ctx: CommandContext, name: str | None = None, *, force: bool = False) -> int:
    if name is None:
        if not create_supervisor(ctx.settings).stop():
            ctx.note("local server is not running")
        return 0

    async with ctx.open_session(ctx.settings) as session:
        await CommandDispatcher(session).reset(name, force)
    ctx.note(f"{name} stopped")
    return 0
