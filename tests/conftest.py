# tests/conftest.py

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from skale_cli.config import Credentials
from skale_cli.remote.session import RemoteSession

from .fakes import FakeConfigStore, FakeService, FakeTransport


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Keep every test away from the real ~/.skalerc, ~/.skale and any .env file.
    """
    for name in ("SKALE_HOST", "SKALE_PORT", "SKALE_SSL", "SKALE_TOKEN", "SKALE_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SKALE_CONFIG", str(tmp_path / "skalerc"))
    monkeypatch.setenv("SKALE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    """The CLI entrypoint reconfigures the root logger; undo it after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.fixture()
def service() -> FakeService:
    return FakeService()


@pytest.fixture()
def transport(service: FakeService) -> FakeTransport:
    return FakeTransport(service)


@pytest.fixture()
def config_store() -> FakeConfigStore:
    return FakeConfigStore()


@pytest.fixture()
def credentials() -> Credentials:
    return Credentials(host="localhost", port=3000, ssl=False, token="tok-1")


@pytest.fixture()
def session(credentials: Credentials, transport: FakeTransport, config_store: FakeConfigStore) -> RemoteSession:
    """
    Unconnected session wired to the fake transport.

    NOTE: tests call `await session.connect()` themselves so they can script
    the login reply first.
    """
    return RemoteSession(credentials, transport, config_store=config_store)
