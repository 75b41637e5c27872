# tests/test_supervisor.py

from __future__ import annotations

import asyncio
import subprocess
from pathlib import Path

import pytest

from skale_cli.errors import ProcessError
from skale_cli.local import supervisor as supervisor_mod
from skale_cli.local.supervisor import LocalSupervisor

from .fakes import FakeProcess

SERVER_BIN = "node_modules/skale-engine/bin/server.js"


def _supervisor(tmp_path: Path, procs: list[FakeProcess], port: int = 12346) -> LocalSupervisor:
    return LocalSupervisor(
        server_bin=SERVER_BIN,
        port=port,
        log_path=tmp_path / "skale-server.log",
        list_processes=lambda: procs,
    )


def test_stop_without_matching_process_is_a_noop(tmp_path: Path) -> None:
    other = FakeProcess(10, ["vim", "notes.txt"])
    sup = _supervisor(tmp_path, [other])

    assert sup.stop() is False
    assert not other.terminated


def test_stop_terminates_first_match_only(tmp_path: Path) -> None:
    first = FakeProcess(20, ["node", SERVER_BIN, "-l", "2", "-m", "4000"])
    second = FakeProcess(21, ["skale-server 12346"])
    sup = _supervisor(tmp_path, [FakeProcess(1, ["init"]), first, second])

    assert sup.stop() is True
    assert first.terminated
    assert not second.terminated


def test_stop_prefers_recorded_pid(tmp_path: Path) -> None:
    first = FakeProcess(20, ["skale-server 12346"])
    spawned = FakeProcess(33, [SERVER_BIN, "-l", "4", "-m", "1000"])
    sup = _supervisor(tmp_path, [first, spawned])
    sup.pid_path.write_text("33", "utf-8")

    assert sup.stop() is True
    assert spawned.terminated
    assert not first.terminated
    assert not sup.pid_path.exists()


def test_stale_recorded_pid_falls_back_to_pattern(tmp_path: Path) -> None:
    server = FakeProcess(20, ["skale-server 12346"])
    reused = FakeProcess(33, ["python", "unrelated.py"])
    sup = _supervisor(tmp_path, [reused, server])
    sup.pid_path.write_text("33", "utf-8")

    assert sup.stop() is True
    assert server.terminated
    assert not reused.terminated


def test_signature_requires_matching_port(tmp_path: Path) -> None:
    sup = _supervisor(tmp_path, [], port=12346)
    assert sup.matches(["skale-server 12346"])
    assert not sup.matches(["skale-server 9999"])
    assert not sup.matches([])


def test_status_lists_header_and_matching_processes(tmp_path: Path) -> None:
    server = FakeProcess(20, ["skale-server 12346"], user="alice")
    sup = _supervisor(tmp_path, [FakeProcess(1, ["init"]), server])

    lines = sup.status()

    assert len(lines) == 2
    assert lines[0].startswith("USER")
    assert "alice" in lines[1] and "20" in lines[1] and "skale-server 12346" in lines[1]


def test_start_spawns_detached_with_log_and_pid_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[list[str], dict]] = []

    class FakePopen:
        def __init__(self, cmd, **kwargs) -> None:
            calls.append((cmd, kwargs))
            self.pid = 4242

    monkeypatch.setattr(supervisor_mod.subprocess, "Popen", FakePopen)
    sup = _supervisor(tmp_path, [])

    pid = sup.start(3, 2048)

    cmd, kwargs = calls[0]
    assert pid == 4242
    assert cmd == [SERVER_BIN, "-l", "3", "-m", "2048"]
    assert kwargs["start_new_session"] is True
    assert kwargs["stderr"] is subprocess.STDOUT
    assert sup.log_path.exists()
    assert sup.pid_path.read_text("utf-8") == "4242"


def test_rotate_log_keeps_previous_as_old(tmp_path: Path) -> None:
    sup = _supervisor(tmp_path, [])
    sup.log_path.write_text("previous run\n", "utf-8")

    sup.rotate_log()

    assert not sup.log_path.exists()
    assert (tmp_path / "skale-server.log.old").read_text("utf-8") == "previous run\n"


@pytest.mark.asyncio
async def test_probe_ready_gives_up_after_n_attempts(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    attempts: list[int] = []

    async def refuse(host, port):
        attempts.append(port)
        raise ConnectionRefusedError(111, "Connection refused")

    monkeypatch.setattr(supervisor_mod.asyncio, "open_connection", refuse)
    sup = _supervisor(tmp_path, [])

    assert await sup.probe_ready(4, 0) is False
    assert attempts == [12346] * 4


@pytest.mark.asyncio
async def test_probe_ready_succeeds_on_listening_port(tmp_path: Path) -> None:
    server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        assert await _supervisor(tmp_path, [], port=port).probe_ready(1, 0) is True
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_ensure_running_raises_when_server_never_listens(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    sup = _supervisor(tmp_path, [])
    started: list[tuple[int, int]] = []

    async def never_ready(max_attempts: int = 5, interval: float = 1.0) -> bool:
        return False

    monkeypatch.setattr(sup, "probe_ready", never_ready)
    monkeypatch.setattr(sup, "start", lambda w, m: started.append((w, m)) or 1)

    with pytest.raises(ProcessError):
        await sup.ensure_running(2, 4000, interval=0)

    assert started == [(2, 4000)]


def test_stop_waits_for_the_server_to_exit(tmp_path: Path) -> None:
    server = FakeProcess(20, ["skale-server 12346"])
    sup = _supervisor(tmp_path, [server])

    assert sup.stop() is True
    assert server.waits == [sup.stop_timeout]
    assert not server.killed


def test_stop_kills_a_server_that_ignores_sigterm(tmp_path: Path) -> None:
    server = FakeProcess(20, ["skale-server 12346"], ignores_sigterm=True)
    sup = _supervisor(tmp_path, [server])

    assert sup.stop() is True
    assert server.killed
    assert len(server.waits) == 2
