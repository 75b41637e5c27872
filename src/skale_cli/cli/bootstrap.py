# src/skale_cli/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads the credential record once, with settings overrides applied,
- wires the websocket transport and config store into a RemoteSession,
- builds the local supervisor from settings.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

import click

from ..config import ConfigStore, Credentials, Settings
from ..core.ports import CredentialPrompt
from ..local.supervisor import LocalSupervisor
from ..remote.session import RemoteSession
from ..remote.transport import WebSocketTransport

logger = logging.getLogger(__name__)


def prompt_credentials() -> tuple[str, str]:
    email = click.prompt("Email", err=True)
    password = click.prompt("Password", hide_input=True, err=True)
    return email, password


def load_credentials(settings: Settings, *, force_save: bool = False) -> tuple[ConfigStore, Credentials]:
    store = ConfigStore(settings.config_path)
    creds = store.load(
        host=settings.host,
        port=settings.port,
        ssl=settings.ssl,
        token=settings.token,
        force_save=force_save,
    )
    return store, creds


def create_session(settings: Settings, *, prompt: CredentialPrompt | None = prompt_credentials) -> RemoteSession:
    """Create an unconnected session: credential record + websocket transport."""
    store, creds = load_credentials(settings)
    transport = WebSocketTransport(creds.url, reconnect_delay=settings.reconnect_delay)
    return RemoteSession(creds, transport, config_store=store, prompt=prompt)


@contextlib.asynccontextmanager
async def open_session(settings: Settings) -> AsyncIterator[RemoteSession]:
    session = create_session(settings)
    logger.info("Connecting to %s", session.credentials.url)
    await session.connect()
    try:
        yield session
    finally:
        session.close()
        await session.wait_closed()


def create_supervisor(settings: Settings) -> LocalSupervisor:
    return LocalSupervisor(
        server_bin=settings.server_bin,
        port=settings.server_port,
        log_path=settings.server_log,
    )
