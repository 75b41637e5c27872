# tests/fakes.py

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import psutil

from skale_cli.core.ports import Message


@dataclass(slots=True)
class Fail:
    """Error payload a FakeService method answers with."""

    payload: dict[str, Any]


NO_REPLY = object()


def added(collection: str, doc_id: str, **fields: Any) -> Message:
    return {"msg": "added", "collection": collection, "id": doc_id, "fields": fields}


def changed(collection: str, doc_id: str, **fields: Any) -> Message:
    return {"msg": "changed", "collection": collection, "id": doc_id, "fields": fields}


class FakeService:
    """
    Scripted coordination service.

    - methods: name -> reply value, Fail(payload), NO_REPLY, or a callable(*params)
    - subs: name -> list of data messages (or callable(*params) -> list); a missing
      name answers with `nosub`
    """

    def __init__(self) -> None:
        self.methods: dict[str, Any] = {"login": {"id": "user-1", "token": "tok-1"}}
        self.subs: dict[str, Any] = {}

    def __call__(self, msg: Message) -> list[Message]:
        kind = msg.get("msg")
        if kind == "method":
            handler = self.methods.get(msg["method"])
            if handler is None:
                return [{"msg": "result", "id": msg["id"], "error": {"error": 404, "reason": "Method not found"}}]
            reply = handler(*msg["params"]) if callable(handler) else handler
            if reply is NO_REPLY:
                return []
            if isinstance(reply, Fail):
                return [{"msg": "result", "id": msg["id"], "error": reply.payload}]
            return [{"msg": "result", "id": msg["id"], "result": reply}]

        if kind == "sub":
            docs = self.subs.get(msg["name"])
            if docs is None:
                return [{"msg": "nosub", "id": msg["id"], "error": {"error": 404, "reason": "not found"}}]
            data = docs(*msg["params"]) if callable(docs) else docs
            return [*data, {"msg": "ready", "subs": [msg["id"]]}]

        return []


class FakeTransport:
    """In-memory Transport: records sent frames, answers through a FakeService."""

    def __init__(self, service: FakeService | None = None) -> None:
        self.service = service or FakeService()
        self.sent: list[Message] = []
        self.opened = False
        self.closed = False
        self.close_calls = 0
        self._on_message: Callable[[Message], None] | None = None
        self._on_reconnect: Any = None
        self._on_disconnect: Any = None
        self._on_lost: Any = None

    def bind(self, *, on_message, on_reconnect=None, on_disconnect=None, on_lost=None) -> None:
        self._on_message = on_message
        self._on_reconnect = on_reconnect
        self._on_disconnect = on_disconnect
        self._on_lost = on_lost

    async def open(self) -> None:
        self.opened = True

    async def send(self, message: Message) -> None:
        self.sent.append(message)
        for reply in self.service(message):
            self.push(reply)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    # ---- test controls ----

    def push(self, message: Message) -> None:
        assert self._on_message is not None
        self._on_message(message)

    def drop(self) -> None:
        self._on_disconnect()

    async def reconnect(self) -> None:
        self._on_disconnect()
        await self._on_reconnect()

    def lose(self, error: Exception) -> None:
        self._on_lost(error)

    def sent_named(self, kind: str, name: str) -> list[Message]:
        key = "method" if kind == "method" else "name"
        return [m for m in self.sent if m.get("msg") == kind and m.get(key) == name]


@dataclass(slots=True)
class FakeConfigStore:
    saved: list[str] = field(default_factory=list)
    error: Exception | None = None

    def save_token(self, token: str) -> None:
        if self.error is not None:
            raise self.error
        self.saved.append(token)


@dataclass
class FakeProcess:
    pid: int
    argv: list[str]
    user: str = "dev"
    terminated: bool = False
    ignores_sigterm: bool = False
    killed: bool = False
    waits: list[float | None] = field(default_factory=list)

    def cmdline(self) -> list[str]:
        return list(self.argv)

    def username(self) -> str:
        return self.user

    def is_running(self) -> bool:
        return not self.terminated

    def terminate(self) -> None:
        self.terminated = not self.ignores_sigterm

    def kill(self) -> None:
        self.killed = True
        self.terminated = True

    def wait(self, timeout: float | None = None) -> int | None:
        self.waits.append(timeout)
        if not self.terminated:
            raise psutil.TimeoutExpired(timeout, pid=self.pid)
        return 0
