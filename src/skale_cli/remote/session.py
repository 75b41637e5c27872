# src/skale_cli/remote/session.py

"""
Authenticated session to the coordination service.

One session per CLI invocation:

connect -> login -> calls / subscriptions -> close

Incoming data messages update a local read replica of the subscribed
documents and are also queued, in arrival order, as CollectionEvent values
for the task stream observer.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any

from ..config import Credentials
from ..core.ports import CredentialPrompt, CredentialRepo, Message, Transport
from ..errors import AuthError, ConnectError, NotFoundError, RemoteError, SkaleError
from . import protocol
from .models import CollectionEvent, EventKind

logger = logging.getLogger(__name__)

LOGIN_ATTEMPTS = 2


@dataclass(slots=True)
class _Subscription:
    sub_id: str
    name: str
    params: list[Any]
    ready: asyncio.Future[None] = field(repr=False)


class RemoteSession:
    def __init__(
            self,
            credentials: Credentials,
            transport: Transport,
            *,
            config_store: CredentialRepo | None = None,
            prompt: CredentialPrompt | None = None,
            login_attempts: int = LOGIN_ATTEMPTS,
    ) -> None:
        self.credentials = credentials
        self.transport = transport
        self.config_store = config_store
        self.prompt = prompt
        self.login_attempts = max(1, int(login_attempts))

        self.user_id: str | None = None
        self.authenticated = False
        self.error: SkaleError | None = None

        self._ids = itertools.count(1)
        self._calls: dict[str, asyncio.Future[Any]] = {}
        self._subs: dict[str, _Subscription] = {}
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._events: asyncio.Queue[CollectionEvent | None] = asyncio.Queue()
        self._closed = False
        self._closing: asyncio.Task[None] | None = None

        transport.bind(
            on_message=self._handle_message,
            on_reconnect=self._handle_reconnect,
            on_disconnect=self._handle_disconnect,
            on_lost=self._handle_lost,
        )

    # ---- lifecycle ----

    @property
    def closed(self) -> bool:
        return self._closed

    async def connect(self) -> RemoteSession:
        await self.transport.open()
        try:
            await self._authenticate()
        except SkaleError as e:
            self.close(e)
            await self.wait_closed()
            raise
        return self

    def close(self, error: SkaleError | None = None) -> None:
        """
        Idempotent; safe to call from a message handler.

        Pending calls and subscriptions fail, the event stream ends, and the
        transport shutdown is scheduled (see wait_closed()).
        """
        if self._closed:
            return
        self._closed = True
        self.error = error

        reason = error or ConnectError("session closed")
        for fut in self._calls.values():
            if not fut.done():
                fut.set_exception(reason)
        self._calls.clear()
        for sub in self._subs.values():
            if not sub.ready.done():
                sub.ready.set_exception(reason)
        self._events.put_nowait(None)

        self._closing = asyncio.ensure_future(self.transport.close())
        logger.debug("Session closed (error=%r)", error)

    async def wait_closed(self) -> None:
        if self._closing is not None:
            await self._closing

    async def __aenter__(self) -> RemoteSession:
        return await self.connect()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()
        await self.wait_closed()

    # ---- calls ----

    async def call(self, name: str, *params: Any) -> Any:
        """One remote procedure call. No retries: the service does not promise idempotency."""
        if self._closed:
            raise self.error or ConnectError("session closed")

        call_id = str(next(self._ids))
        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._calls[call_id] = fut
        # Login params carry the token or password digest.
        logger.debug("call %s %s(%s)", call_id, name, "<redacted>" if name == "login" else repr(params))
        try:
            await self.transport.send(protocol.method(call_id, name, list(params)))
            return await fut
        finally:
            self._calls.pop(call_id, None)

    # ---- subscriptions ----

    async def subscribe(self, name: str, *params: Any) -> str:
        """Subscribe and wait until the service reports the initial data set is complete."""
        if self._closed:
            raise self.error or ConnectError("session closed")

        sub_id = str(next(self._ids))
        sub = _Subscription(
            sub_id=sub_id,
            name=name,
            params=list(params),
            ready=asyncio.get_running_loop().create_future(),
        )
        self._subs[sub_id] = sub
        logger.debug("sub %s %s(%r)", sub_id, name, params)
        try:
            await self.transport.send(protocol.sub(sub_id, name, sub.params))
            await sub.ready
        except BaseException:
            self._subs.pop(sub_id, None)
            raise
        return sub_id

    async def unsubscribe(self, sub_id: str) -> None:
        if self._subs.pop(sub_id, None) is None or self._closed:
            return
        await self.transport.send(protocol.unsub(sub_id))

    # ---- replica + event stream ----

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        return dict(self._collections.get(collection, {}))

    def document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return dict(doc) if doc is not None else None

    async def next_event(self) -> CollectionEvent | None:
        """Next change notification, or None once the session is closed."""
        if self._closed and self._events.empty():
            return None
        ev = await self._events.get()
        if ev is None:
            # Keep the end marker for any later reader.
            self._events.put_nowait(None)
        return ev

    # ---- authentication ----

    async def _authenticate(self) -> None:
        last: AuthError | None = None
        token = self.credentials.token

        for attempt in range(1, self.login_attempts + 1):
            if token:
                params = protocol.resume_login(token)
            elif self.prompt is not None:
                email, password = self.prompt()
                params = protocol.password_login(email, password)
            else:
                raise last or AuthError("not logged in: no token configured")

            try:
                result = await self.call("login", *params)
            except RemoteError as e:
                reason = protocol.error_reason(e.payload)
                last = AuthError(reason, user_not_found=reason == protocol.USER_NOT_FOUND)
                logger.info("Login attempt %d/%d failed: %s", attempt, self.login_attempts, reason)
                token = ""
                continue

            self._accept_login(result)
            return

        raise last or AuthError("authentication failed")

    def _accept_login(self, result: Any) -> None:
        data = result if isinstance(result, dict) else {}
        self.user_id = data.get("id")
        self.authenticated = True
        logger.info("Logged in as %s", self.user_id)

        token = data.get("token")
        if token and token != self.credentials.token:
            self.credentials.token = str(token)
            self._persist_credentials()

    def _persist_credentials(self) -> None:
        if self.config_store is None:
            return
        try:
            self.config_store.save_token(self.credentials.token)
        except Exception as e:
            logger.warning("Could not save the new session token: %s", e)

    # ---- transport hooks ----

    def _handle_message(self, msg: Message) -> None:
        kind = msg.get("msg")

        if kind == "result":
            fut = self._calls.get(str(msg.get("id")))
            if fut is None or fut.done():
                return
            if msg.get("error") is not None:
                fut.set_exception(RemoteError(msg["error"]))
            else:
                fut.set_result(msg.get("result"))
            return

        if kind == "ready":
            for sub_id in msg.get("subs") or []:
                sub = self._subs.get(str(sub_id))
                if sub is not None and not sub.ready.done():
                    sub.ready.set_result(None)
            return

        if kind == "nosub":
            sub = self._subs.pop(str(msg.get("id")), None)
            if sub is not None and not sub.ready.done():
                error = msg.get("error")
                reason = protocol.error_reason(error) if error is not None else "subscription stopped"
                sub.ready.set_exception(NotFoundError(f"{sub.name}{tuple(sub.params)!r}: {reason}"))
            return

        if kind in (EventKind.ADDED, EventKind.CHANGED, EventKind.REMOVED):
            self._apply_data(msg)
            return

        logger.debug("Ignoring message %r", kind)

    def _apply_data(self, msg: Message) -> None:
        kind = EventKind(msg["msg"])
        collection = str(msg.get("collection"))
        doc_id = str(msg.get("id"))
        raw_fields = msg.get("fields") or {}
        raw_cleared = msg.get("cleared") or ()
        if not isinstance(raw_fields, dict) or not isinstance(raw_cleared, (list, tuple)):
            logger.warning("Ignoring malformed %s frame for %s/%s", kind.value, collection, doc_id)
            return
        fields = dict(raw_fields)
        cleared = tuple(str(name) for name in raw_cleared)

        docs = self._collections.setdefault(collection, {})
        if kind is EventKind.ADDED:
            docs[doc_id] = dict(fields)
        elif kind is EventKind.CHANGED:
            doc = docs.setdefault(doc_id, {})
            doc.update(fields)
            for name in cleared:
                doc.pop(name, None)
        else:
            docs.pop(doc_id, None)

        if not self._closed:
            self._events.put_nowait(CollectionEvent(kind, collection, doc_id, fields, cleared))

    def _handle_disconnect(self) -> None:
        # Unanswered calls are not resent after reconnect.
        error = ConnectError("connection lost before the service replied")
        for fut in self._calls.values():
            if not fut.done():
                fut.set_exception(error)
        self._calls.clear()
        self.authenticated = False

    def _handle_lost(self, error: Exception) -> None:
        self.close(error if isinstance(error, SkaleError) else ConnectError(str(error)))

    async def _handle_reconnect(self) -> None:
        if self._closed:
            return
        try:
            if self.credentials.token:
                result = await self.call("login", *protocol.resume_login(self.credentials.token))
                self._accept_login(result)
            for sub in list(self._subs.values()):
                await self.transport.send(protocol.sub(sub.sub_id, sub.name, sub.params))
        except RemoteError as e:
            self.close(AuthError(protocol.error_reason(e.payload)))
        except SkaleError as e:
            # Lost again while resuming; the transport keeps retrying.
            logger.info("Resume after reconnect interrupted: %s", e)
