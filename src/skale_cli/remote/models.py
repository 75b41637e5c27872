# src/skale_cli/remote/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

TASKS = "tasks"
APPLICATIONS = "applications"


class TaskStatus(StrEnum):
    """
    Remote task lifecycle status.

    pending -> ok | failed; terminal states are absorbing.
    """

    PENDING = "pending"
    OK = "ok"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskStatus.PENDING

    @classmethod
    def parse(cls, raw: Any) -> TaskStatus | None:
        if raw is None:
            return None
        try:
            return cls(str(raw))
        except ValueError:
            return None


class EventKind(StrEnum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


@dataclass(slots=True, frozen=True)
class CollectionEvent:
    """One field-change notification pushed by the service, in arrival order."""

    kind: EventKind
    collection: str
    doc_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    cleared: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class RunReply:
    task_id: str | None
    already_started: bool

    @staticmethod
    def from_result(result: Any) -> RunReply:
        data = result if isinstance(result, dict) else {}
        task_id = data.get("taskId")
        return RunReply(
            task_id=str(task_id) if task_id is not None else None,
            already_started=bool(data.get("alreadyStarted", False)),
        )


@dataclass(slots=True)
class Application:
    name: str
    status: str | None = None
    url: str | None = None
    commit: str | None = None
    task_id: str | None = None

    @staticmethod
    def from_doc(doc: dict[str, Any]) -> Application:
        task_id = doc.get("taskId")
        return Application(
            name=str(doc.get("name", "")),
            status=doc.get("status"),
            url=doc.get("url"),
            commit=doc.get("commit"),
            task_id=str(task_id) if task_id is not None else None,
        )
