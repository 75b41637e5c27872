# src/skale_cli/config.py

"""Settings loaded from environment variables (+ optional .env), and the persisted credential record.

Design goals:
- One Settings object per invocation, built once by the CLI and passed down explicitly.
- No secrets required at import time.
- The credential record (~/.skalerc) is recreated with defaults when missing or invalid.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "SKALE"

DEFAULT_HOST = "skale.me"
DEFAULT_PORT = 8888
DEFAULT_SERVER_PORT = 12346


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_opt(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_bool_opt(name: str) -> bool | None:
    raw = _env_opt(name)
    return None if raw is None else _parse_bool(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_int_opt(name: str) -> int | None:
    raw = _env_opt(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default.expanduser()
    return Path(raw).expanduser()


def _log_level(raw: str) -> str:
    # SKALE_DEBUG=1 is the historical spelling for "debug everything".
    s = raw.strip().upper()
    if not s or s in {"0", "FALSE", "NO", "OFF"}:
        return "WARNING"
    if s in {"1", "TRUE", "YES", "ON"}:
        return "DEBUG"
    return s


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- Logging ----
    log_level: str
    data_dir: Path

    # ---- Credential record + overrides ----
    config_path: Path
    host: str | None
    port: int | None
    ssl: bool | None
    token: str | None

    # ---- Remote session ----
    reconnect_delay: float

    # ---- Local worker-pool server ----
    server_bin: str
    server_port: int
    server_log: Path
    app_runner: str

    @staticmethod
    def from_env() -> "Settings":
        load_dotenv(override=False)

        return Settings(
            log_level=_log_level(_env(_k("DEBUG"), "")),
            data_dir=_env_path(_k("DATA_DIR"), Path("~/.skale")),
            config_path=_env_path(_k("CONFIG"), Path("~/.skalerc")),
            host=_env_opt(_k("HOST")),
            port=_env_int_opt(_k("PORT")),
            ssl=_env_bool_opt(_k("SSL")),
            token=_env_opt(_k("TOKEN")),
            reconnect_delay=_env_float(_k("RECONNECT_DELAY"), 0.5),
            server_bin=_env(_k("SERVER_BIN"), "node_modules/skale-engine/bin/server.js"),
            server_port=_env_int(_k("SERVER_PORT"), DEFAULT_SERVER_PORT),
            server_log=Path(_env(_k("SERVER_LOG"), "skale-server.log")),
            app_runner=_env(_k("APP_RUNNER"), "node"),
        )

    def with_overrides(self, **changes: Any) -> "Settings":
        """Apply command-line overrides (None values are ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def get_settings() -> Settings:
    return Settings.from_env()


@dataclass(slots=True)
class Credentials:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    ssl: bool = False
    token: str = ""

    @property
    def url(self) -> str:
        scheme = "wss" if self.ssl else "ws"
        return f"{scheme}://{self.host}:{self.port}/websocket"

    def to_json(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_json(data: Any) -> "Credentials":
        if not isinstance(data, dict):
            raise ConfigError("Expected JSON object")
        try:
            port = int(data.get("port", DEFAULT_PORT))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid port: {data.get('port')!r}") from e
        host = data.get("host") or DEFAULT_HOST
        token = data.get("token") or ""
        if not isinstance(host, str) or not isinstance(token, str):
            raise ConfigError("host and token must be strings")
        ssl = data.get("ssl", False)
        if not isinstance(ssl, bool):
            raise ConfigError(f"ssl must be true or false, got {ssl!r}")
        return Credentials(host=host, port=port, ssl=ssl, token=token)


class ConfigStore:
    """Loads and saves the persisted credential record."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        # The record as it is on disk, without CLI/env overrides.
        self.stored: Credentials | None = None

    def load(
        self,
        *,
        host: str | None = None,
        port: int | None = None,
        ssl: bool | None = None,
        token: str | None = None,
        force_save: bool = False,
    ) -> Credentials:
        """
        Read the record, apply overrides, and persist once if the record was
        missing/invalid (or force_save is set, e.g. `skale init`).
        """
        save = force_save
        try:
            stored = Credentials.from_json(self._read())
        except (OSError, ValueError, ConfigError) as e:
            # json.JSONDecodeError is a ValueError.
            if not isinstance(e, FileNotFoundError):
                logger.warning("Config %s is invalid, using defaults: %s", self.path, e)
            else:
                logger.info("Config %s not found, creating it", self.path)
            stored = Credentials()
            save = True
        self.stored = stored

        creds = Credentials(
            host=host or stored.host,
            port=port if port is not None else stored.port,
            ssl=stored.ssl if ssl is None else ssl,
            token=token or stored.token,
        )
        if save:
            self.save(creds)
        return creds

    def save(self, credentials: Credentials) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(credentials.to_json(), f, indent=2)
        os.replace(tmp, self.path)
        self.stored = replace(credentials)
        logger.debug("Config saved to %s", self.path)

    def save_token(self, token: str) -> None:
        """Write a rotated session token into the stored record; overrides stay out of it."""
        stored = self.stored
        if stored is None:
            try:
                stored = Credentials.from_json(self._read())
            except (OSError, ValueError, ConfigError):
                stored = Credentials()
        self.save(replace(stored, token=token))

    def _read(self) -> Any:
        return json.loads(self.path.read_text("utf-8"))
