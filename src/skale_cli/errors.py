# src/skale_cli/errors.py

"""
Error taxonomy.

Every failure that should end the invocation derives from SkaleError; the CLI
entrypoint turns it into a message on stderr and exit status 1.
"""

from __future__ import annotations

from typing import Any


class SkaleError(Exception):
    """Base class for all expected, user-reportable failures."""


class ConfigError(SkaleError):
    """Persisted config is unreadable or invalid (recovered locally)."""


class AuthError(SkaleError):
    def __init__(self, reason: str, *, user_not_found: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        self.user_not_found = user_not_found


class ConnectError(SkaleError):
    """Transport could not (re)establish a connection."""


class RemoteError(SkaleError):
    """
    The service rejected a call.

    The raw error payload is kept unchanged in `payload`.
    """

    def __init__(self, payload: Any) -> None:
        self.payload = payload
        if isinstance(payload, dict):
            self.error = payload.get("error")
            self.reason = payload.get("reason")
            self.details = payload.get("details")
            message = payload.get("message") or payload.get("reason") or str(payload.get("error"))
        else:
            self.error = payload
            self.reason = None
            self.details = None
            message = str(payload)
        super().__init__(message)


class NotFoundError(SkaleError):
    """Subscribed application or task does not exist."""


class StaleDeploymentError(SkaleError):
    """Local sources differ from what was last deployed."""


class ProcessError(SkaleError):
    """Local worker-pool server did not become ready."""
