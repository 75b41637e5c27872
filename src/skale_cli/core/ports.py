# src/skale_cli/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the remote and local cores.

The session depends on Protocols instead of concrete implementations.
This keeps the websocket transport and the on-disk config swappable and makes testing easier.
"""

from typing import Any, Awaitable, Callable, Iterable, Protocol

Message = dict[str, Any]
# Decoded protocol frame: {"msg": "...", ...}.

MessageHandler = Callable[[Message], None]
ReconnectHandler = Callable[[], Awaitable[None]]
LostHandler = Callable[[Exception], None]

CredentialPrompt = Callable[[], tuple[str, str]]
# Interactive retrieval of (email, password).


class Transport(Protocol):
    """
    Message transport to the coordination service.

    The transport owns reconnection; the session only sees decoded messages,
    a hook after each successful reconnect, and a hook when the link is lost for good.
    """

    def bind(
            self,
            *,
            on_message: MessageHandler,
            on_reconnect: ReconnectHandler | None = None,
            on_disconnect: Callable[[], None] | None = None,
            on_lost: LostHandler | None = None,
    ) -> None: ...

    async def open(self) -> None: ...
    async def send(self, message: Message) -> None: ...
    async def close(self) -> None: ...


class CredentialRepo(Protocol):
    def save_token(self, token: str) -> None: ...


class ProcessInfo(Protocol):
    """The subset of psutil.Process the supervisor relies on."""

    pid: int

    def cmdline(self) -> list[str]: ...
    def username(self) -> str: ...
    def is_running(self) -> bool: ...
    def terminate(self) -> None: ...
    def kill(self) -> None: ...
    def wait(self, timeout: float | None = None) -> int | None: ...


ProcessLister = Callable[[], Iterable[ProcessInfo]]
