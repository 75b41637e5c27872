# src/skale_cli/local/supervisor.py

"""
Local worker-pool server supervision.

The server is spawned detached: it outlives the CLI, so later invocations
find it again by matching the process table against its name/port
signature. The pid we spawned is also recorded next to the log and is
preferred when it still points at a matching process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import subprocess
from pathlib import Path

import psutil

from ..core.ports import ProcessInfo, ProcessLister
from ..errors import ProcessError

logger = logging.getLogger(__name__)

SERVER_NAME = "skale-server"


def _list_processes() -> list[ProcessInfo]:
    return list(psutil.process_iter())


def _safe_cmdline(proc: ProcessInfo) -> list[str]:
    try:
        return [str(part) for part in proc.cmdline()]
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return []


def _safe_username(proc: ProcessInfo) -> str:
    try:
        return proc.username()
    except (psutil.NoSuchProcess, psutil.AccessDenied, KeyError):
        return "?"


class LocalSupervisor:
    def __init__(
            self,
            *,
            server_bin: str,
            port: int,
            log_path: str | Path = "skale-server.log",
            list_processes: ProcessLister | None = None,
            host: str = "127.0.0.1",
            stop_timeout: float = 5.0,
    ) -> None:
        self.server_bin = server_bin
        self.port = int(port)
        self.log_path = Path(log_path)
        self.pid_path = self.log_path.with_name(self.log_path.name + ".pid")
        self.host = host
        self.stop_timeout = stop_timeout
        self._list_processes = list_processes or _list_processes

    # ---- start / readiness ----

    def start(self, workers: int, memory_mb: int) -> int:
        """Spawn the server detached, appending stdout+stderr to the log. Returns its pid."""
        cmd = [self.server_bin, "-l", str(int(workers)), "-m", str(int(memory_mb))]
        logger.info("Starting local server: %s (log: %s)", " ".join(cmd), self.log_path)
        try:
            with open(self.log_path, "ab") as log:
                child = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                    close_fds=True,
                )
        except OSError as e:
            raise ProcessError(f"cannot start {self.server_bin}: {e}") from e

        with contextlib.suppress(OSError):
            self.pid_path.write_text(str(child.pid), "utf-8")
        return child.pid

    async def probe_ready(self, max_attempts: int = 5, interval: float = 1.0) -> bool:
        """
        Try a bare TCP connection up to max_attempts times, sleeping
        `interval` seconds after each failure except the last.
        """
        attempts = max(1, int(max_attempts))
        for attempt in range(1, attempts + 1):
            try:
                _reader, writer = await asyncio.open_connection(self.host, self.port)
            except OSError as e:
                logger.debug("Probe %d/%d on %s:%d failed: %s", attempt, attempts, self.host, self.port, e)
                if attempt < attempts:
                    await asyncio.sleep(interval)
                continue
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
            return True
        return False

    async def ensure_running(
            self,
            workers: int,
            memory_mb: int,
            *,
            max_attempts: int = 5,
            interval: float = 1.0,
    ) -> None:
        if await self.probe_ready(1, 0):
            logger.debug("Local server already listening on port %d", self.port)
            return
        self.start(workers, memory_mb)
        if not await self.probe_ready(max_attempts, interval):
            raise ProcessError(f"{SERVER_NAME} not ok: nothing listening on port {self.port}, see {self.log_path}")

    # ---- discovery ----

    def matches(self, cmdline: list[str]) -> bool:
        joined = " ".join(cmdline)
        if f"{SERVER_NAME} {self.port}" in joined:
            return True
        # Either the executable itself or its interpreter (`node server.js ...`).
        return any(part.endswith(self.server_bin) for part in cmdline[:2])

    def find(self) -> list[ProcessInfo]:
        return [proc for proc in self._list_processes() if self.matches(_safe_cmdline(proc))]

    def _recorded(self) -> ProcessInfo | None:
        try:
            pid = int(self.pid_path.read_text("utf-8").strip())
        except (OSError, ValueError):
            return None
        for proc in self._list_processes():
            if proc.pid == pid and self.matches(_safe_cmdline(proc)):
                return proc
        return None

    def stop(self) -> bool:
        """
        Terminate the server (recorded pid first, else first match) and wait
        for it to exit, killing it after `stop_timeout`. Returns False if none runs.
        """
        proc = self._recorded()
        if proc is None:
            found = self.find()
            if not found:
                logger.info("No local server running")
                return False
            proc = found[0]

        logger.info("Stopping local server pid=%d", proc.pid)
        try:
            proc.terminate()
            proc.wait(timeout=self.stop_timeout)
        except psutil.NoSuchProcess:
            logger.debug("Process %d already gone", proc.pid)
        except psutil.TimeoutExpired:
            logger.warning("Local server pid=%d ignored SIGTERM for %.1fs, killing it", proc.pid, self.stop_timeout)
            with contextlib.suppress(psutil.NoSuchProcess):
                proc.kill()
                proc.wait(timeout=self.stop_timeout)
        with contextlib.suppress(OSError):
            self.pid_path.unlink()
        return True

    def status(self) -> list[str]:
        lines = ["USER       PID COMMAND"]
        for proc in self.find():
            lines.append(f"{_safe_username(proc):<8} {proc.pid:>5} {' '.join(_safe_cmdline(proc))}")
        return lines

    def rotate_log(self) -> None:
        """Keep the previous log as <log>.old and start a fresh one."""
        if self.log_path.exists():
            os.replace(self.log_path, self.log_path.with_name(self.log_path.name + ".old"))
