# src/skale_cli/remote/transport.py

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..core.ports import LostHandler, Message, MessageHandler, ReconnectHandler
from ..errors import ConnectError
from . import protocol

logger = logging.getLogger(__name__)

# Failures worth another reconnect attempt; anything else is reported.
_TRANSIENT = (OSError, InvalidHandshake, asyncio.TimeoutError, ConnectionClosed)


class WebSocketTransport:
    """
    Websocket link to the coordination service.

    Reconnect policy: on any connection loss, wait `reconnect_delay` seconds and
    try again, forever. Only a protocol-level refusal of the handshake is
    reported as a failure (through `on_lost`).
    """

    def __init__(
            self,
            url: str,
            *,
            reconnect_delay: float = 0.5,
            open_timeout: float = 10.0,
            connect: Callable[..., Any] | None = None,
    ) -> None:
        self.url = url
        self.reconnect_delay = max(0.0, float(reconnect_delay))
        self.open_timeout = open_timeout
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

        self._on_message: MessageHandler | None = None
        self._on_reconnect: ReconnectHandler | None = None
        self._on_disconnect: Callable[[], None] | None = None
        self._on_lost: LostHandler | None = None
        self._hooks: set[asyncio.Task[None]] = set()

    def bind(
            self,
            *,
            on_message: MessageHandler,
            on_reconnect: ReconnectHandler | None = None,
            on_disconnect: Callable[[], None] | None = None,
            on_lost: LostHandler | None = None,
    ) -> None:
        self._on_message = on_message
        self._on_reconnect = on_reconnect
        self._on_disconnect = on_disconnect
        self._on_lost = on_lost

    async def open(self) -> None:
        try:
            self._ws = await self._handshake()
        except ConnectError:
            raise
        except (InvalidURI, *_TRANSIENT) as e:
            raise ConnectError(f"cannot connect to {self.url}: {e}") from e
        logger.info("Connected to %s", self.url)
        self._reader = asyncio.create_task(self._read_loop(), name="skale-transport-reader")

    async def send(self, message: Message) -> None:
        ws = self._ws
        if ws is None or self._closed:
            raise ConnectError("not connected")
        try:
            await ws.send(protocol.encode(message))
        except ConnectionClosed as e:
            raise ConnectError(f"connection to {self.url} lost") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await reader

        ws, self._ws = self._ws, None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        logger.debug("Transport to %s closed", self.url)

    async def _handshake(self) -> Any:
        ws = await self._connect(self.url, open_timeout=self.open_timeout, ping_interval=None)
        try:
            await ws.send(protocol.encode(protocol.connect()))
            while True:
                msg = protocol.decode(await ws.recv())
                kind = msg.get("msg")
                if kind == "connected":
                    logger.debug("Handshake done (session=%s)", msg.get("session"))
                    return ws
                if kind == "failed":
                    raise ConnectError(
                        f"service at {self.url} refused protocol version {protocol.PROTOCOL_VERSION}"
                        f" (supports {msg.get('version')!r})"
                    )
                if kind == "ping":
                    await ws.send(protocol.encode(protocol.pong(msg)))
        except BaseException:
            with contextlib.suppress(Exception):
                await ws.close()
            raise

    async def _read_loop(self) -> None:
        while not self._closed:
            ws = self._ws
            try:
                async for raw in ws:
                    await self._dispatch(raw)
            except ConnectionClosed:
                pass

            if self._closed:
                return

            logger.warning("Connection to %s lost, reconnecting every %.1fs", self.url, self.reconnect_delay)
            self._ws = None
            if self._on_disconnect is not None:
                self._on_disconnect()

            try:
                self._ws = await self._reconnect()
            except ConnectError as e:
                logger.error("Reconnection to %s failed: %s", self.url, e)
                if self._on_lost is not None:
                    self._on_lost(e)
                return

            logger.warning("Reconnected to %s", self.url)
            if self._on_reconnect is not None:
                # The hook issues calls whose replies arrive through this loop; never await it here.
                hook = asyncio.create_task(self._on_reconnect())
                self._hooks.add(hook)
                hook.add_done_callback(self._hooks.discard)

    async def _reconnect(self) -> Any:
        attempt = 0
        while not self._closed:
            attempt += 1
            await asyncio.sleep(self.reconnect_delay)
            try:
                return await self._handshake()
            except _TRANSIENT as e:
                logger.debug("Reconnect attempt %d to %s failed: %r", attempt, self.url, e)
        raise ConnectError("transport closed while reconnecting")

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            msg = protocol.decode(raw)
        except ValueError:
            logger.warning("Ignoring malformed frame: %r", str(raw)[:64])
            return

        if msg.get("msg") == "ping":
            await self._ws.send(protocol.encode(protocol.pong(msg)))
            return
        if msg.get("msg") == "pong":
            return

        if self._on_message is None:
            return
        try:
            self._on_message(msg)
        except Exception:
            # One bad frame must not stop the reader.
            logger.exception("Dropping %r frame the session could not handle", msg.get("msg"))
