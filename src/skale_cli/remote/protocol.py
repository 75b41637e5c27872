# src/skale_cli/remote/protocol.py

"""Frames exchanged with the coordination service (DDP-style JSON over a websocket)."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from ..core.ports import Message

PROTOCOL_VERSION = "1"

USER_NOT_FOUND = "User not found"


def encode(message: Message) -> str:
    return json.dumps(message, separators=(",", ":"))


def decode(raw: str | bytes) -> Message:
    val = json.loads(raw)
    if not isinstance(val, dict) or "msg" not in val:
        raise ValueError(f"not a protocol message: {str(raw)[:64]!r}")
    return val


def connect() -> Message:
    return {"msg": "connect", "version": PROTOCOL_VERSION, "support": [PROTOCOL_VERSION]}


def pong(ping: Message) -> Message:
    out: Message = {"msg": "pong"}
    if "id" in ping:
        out["id"] = ping["id"]
    return out


def method(call_id: str, name: str, params: list[Any]) -> Message:
    return {"msg": "method", "id": call_id, "method": name, "params": params}


def sub(sub_id: str, name: str, params: list[Any]) -> Message:
    return {"msg": "sub", "id": sub_id, "name": name, "params": params}


def unsub(sub_id: str) -> Message:
    return {"msg": "unsub", "id": sub_id}


def resume_login(token: str) -> list[Any]:
    return [{"resume": token}]


def password_login(email: str, password: str) -> list[Any]:
    # The service only accepts hashed passwords over the wire.
    digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
    return [{"user": {"email": email}, "password": {"digest": digest, "algorithm": "sha-256"}}]


def error_reason(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("reason") or error.get("message") or error.get("error") or "unknown error")
    return str(error)
