# src/skale_cli/remote/dispatcher.py

from __future__ import annotations

"""
One-shot administrative calls over an established session.

Every call is sent exactly once; a RemoteError carries the service payload
unchanged to the caller.
"""

import logging
from typing import Any

from ..errors import NotFoundError
from .models import APPLICATIONS, Application, RunReply
from .session import RemoteSession

logger = logging.getLogger(__name__)


class CommandDispatcher:
    def __init__(self, session: RemoteSession) -> None:
        self.session = session

    async def call(self, procedure: str, *args: Any) -> Any:
        logger.debug("-> %s%r", procedure, args)
        reply = await self.session.call(procedure, *args)
        logger.debug("<- %s: %r", procedure, reply)
        return reply

    async def add_application(self, name: str) -> Any:
        return await self.call("applications.add", name)

    async def deploy(self, name: str) -> Any:
        return await self.call("applications.deploy", name)

    async def run(self, name: str, options: dict[str, Any] | None = None) -> RunReply:
        """
        Trigger a run. `already_started` on the reply is a normal outcome,
        not an error: the caller decides whether to refuse or attach.
        """
        result = await self.call("applications.run", name, options or {})
        return RunReply.from_result(result)

    async def reset(self, name: str, force: bool = False) -> Any:
        return await self.call("applications.reset", name, bool(force))

    async def list_applications(self) -> list[Application]:
        await self.session.subscribe("applications")
        apps = [Application.from_doc(doc) for doc in self.session.documents(APPLICATIONS).values()]
        return sorted(apps, key=lambda a: a.name)

    async def find_application(self, name: str) -> Application | None:
        await self.session.subscribe("applications.byName", name)
        for doc in self.session.documents(APPLICATIONS).values():
            if doc.get("name") == name:
                return Application.from_doc(doc)
        return None

    async def application(self, name: str) -> Application:
        app = await self.find_application(name)
        if app is None:
            raise NotFoundError(f"application {name!r} not found")
        return app
