# src/skale_cli/remote/observer.py

from __future__ import annotations

"""
Live task streaming.

The session turns pushed data into an ordered stream of CollectionEvent
values. TaskStreamReducer is a small state machine over that stream for one
task: it keeps the count of output lines already emitted, so every line of
`out` is emitted once, in order, however the service batches growth across
notifications.

A fresh run starts with a baseline of 0; attaching to a running task starts
from the length of `out` at attach time.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from ..errors import NotFoundError
from .models import TASKS, EventKind, TaskStatus
from .session import RemoteSession

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LineEmitted:
    index: int
    text: str


@dataclass(slots=True, frozen=True)
class TraceChanged:
    trace: str


@dataclass(slots=True, frozen=True)
class TaskTerminated:
    status: TaskStatus


StreamOutput = Union[LineEmitted, TraceChanged, TaskTerminated]


class TaskStreamReducer:
    def __init__(self, task_id: str, *, baseline: int = 0) -> None:
        self.task_id = task_id
        self.emitted = max(0, int(baseline))
        self.trace: str | None = None
        self.status = TaskStatus.PENDING
        self.done = False

    def seed(self, snapshot: Mapping[str, Any]) -> list[StreamOutput]:
        """
        Take the current record as the starting point (attach).

        Existing lines and the current trace are not re-emitted; a status
        that is already terminal is reported right away.
        """
        lines = snapshot.get("out") or []
        self.emitted = max(self.emitted, len(lines))
        trace = snapshot.get("trace")
        if trace is not None:
            self.trace = str(trace)
        return self._status_outputs(snapshot)

    def apply(self, fields: Mapping[str, Any]) -> list[StreamOutput]:
        """Outputs for one change notification, lines before the terminal status."""
        if self.done:
            return []

        outputs: list[StreamOutput] = []

        if "trace" in fields and fields["trace"] is not None:
            trace = str(fields["trace"])
            if trace != self.trace:
                self.trace = trace
                outputs.append(TraceChanged(trace))

        if "out" in fields:
            lines = fields["out"] or []
            for index in range(self.emitted, len(lines)):
                outputs.append(LineEmitted(index, str(lines[index])))
            self.emitted = max(self.emitted, len(lines))

        outputs.extend(self._status_outputs(fields))
        return outputs

    def _status_outputs(self, fields: Mapping[str, Any]) -> list[StreamOutput]:
        status = TaskStatus.parse(fields.get("status"))
        if status is None or not status.is_terminal or self.done:
            return []
        self.status = status
        self.done = True
        return [TaskTerminated(status)]


LineCallback = Callable[[str], None]
TerminalCallback = Callable[[TaskStatus], None]
TraceCallback = Callable[[str], None]


def _deliver(
        outputs: list[StreamOutput],
        on_line: LineCallback,
        on_terminal: TerminalCallback,
        on_trace: TraceCallback | None,
) -> None:
    for out in outputs:
        if isinstance(out, LineEmitted):
            on_line(out.text)
        elif isinstance(out, TraceChanged):
            logger.debug("trace: %s", out.trace)
            if on_trace is not None:
                on_trace(out.trace)
        else:
            on_terminal(out.status)


async def _subscribe_task(session: RemoteSession, task_id: str) -> None:
    try:
        await session.subscribe("task.byId", task_id)
    except NotFoundError as e:
        session.close(e)
        raise


async def observe_task(
        session: RemoteSession,
        task_id: str,
        on_line: LineCallback,
        on_terminal: TerminalCallback,
        *,
        on_trace: TraceCallback | None = None,
        attach: bool = False,
) -> TaskStatus | None:
    """
    Stream a task until it reaches a terminal status, then close the session.

    Returns the terminal status, or None if the session ended first (lines
    delivered before that point have been emitted). A session error that
    ended the stream is re-raised.
    """
    await _subscribe_task(session, task_id)
    reducer = TaskStreamReducer(task_id)

    if attach:
        snapshot = session.document(TASKS, task_id)
        if snapshot is None:
            error = NotFoundError(f"task {task_id!r} not found")
            session.close(error)
            raise error
        _deliver(reducer.seed(snapshot), on_line, on_terminal, on_trace)

    while not reducer.done:
        ev = await session.next_event()
        if ev is None:
            if session.error is not None:
                raise session.error
            logger.info("Session closed before task %s finished", task_id)
            return None

        if ev.collection != TASKS or ev.doc_id != task_id:
            continue
        if ev.kind is EventKind.REMOVED:
            error = NotFoundError(f"task {task_id!r} was removed")
            session.close(error)
            raise error

        _deliver(reducer.apply(ev.fields), on_line, on_terminal, on_trace)

    logger.info("Task %s finished: %s", task_id, reducer.status.value)
    session.close()
    return reducer.status


async def replay_log(session: RemoteSession, task_id: str, on_line: LineCallback) -> TaskStatus:
    """Emit the full current output of a task once, without following it."""
    await _subscribe_task(session, task_id)
    doc = session.document(TASKS, task_id)
    if doc is None:
        raise NotFoundError(f"task {task_id!r} not found")
    for line in doc.get("out") or []:
        on_line(str(line))
    return TaskStatus.parse(doc.get("status")) or TaskStatus.PENDING
