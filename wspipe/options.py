"""
wspipe.options
==============

Run-wide configuration. One :class:`Options` instance is created at startup,
shared by reference for the whole run and never mutated.

`load_options()` reads environment variables, applies explicit overrides
(normally CLI flags) on top and validates the result.

Env prefix: WSPIPE_

Key env vars (examples):
- WSPIPE_BUFFER_SIZE=65536
- WSPIPE_BROADCAST_QUEUE_LEN=16
- WSPIPE_DEBT_HANDLING=silent|warn|error|drop-message
- WSPIPE_TEXT=true
- WSPIPE_RESTRICT_URI=/chat
- WSPIPE_AUTORECONNECT_DELAY=0.5
- WSPIPE_UNIDIRECTIONAL=true
- WSPIPE_EXIT_ON_EOF=true
- WSPIPE_ONESHOT=true
- WSPIPE_NO_LINE=true
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .constants import (
    DEFAULT_AUTORECONNECT_DELAY,
    DEFAULT_BROADCAST_QUEUE_LEN,
    DEFAULT_BUFFER_SIZE,
    ENV_PREFIX,
    MAX_MESSAGE_SIZE_DEFAULT,
)
from .errors import ConfigError

__all__ = ["DebtHandling", "Options", "load_options"]


class DebtHandling(str, Enum):
    """What to do when a message does not fit into one read call."""

    SILENT = "silent"
    WARN = "warn"
    ERROR = "error"
    DROP_MESSAGE = "drop-message"

    @classmethod
    def parse(cls, value: "str | DebtHandling") -> "DebtHandling":
        if isinstance(value, DebtHandling):
            return value
        v = value.strip().lower().replace("_", "-")
        for member in cls:
            if member.value == v:
                return member
        raise ConfigError(
            message=f"Unknown debt handling policy {value!r}",
            details={"choices": [m.value for m in cls]},
        )


@dataclass(frozen=True, slots=True)
class Options:
    # WebSocket
    websocket_text_mode: bool = False
    websocket_protocol: Optional[str] = None
    websocket_dont_close: bool = False
    ws_c_uri: str = "ws://0.0.0.0/"
    websocket_version: Optional[str] = None
    origin: Optional[str] = None
    custom_headers: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)
    restrict_uri: Optional[str] = None
    max_message_size: int = MAX_MESSAGE_SIZE_DEFAULT

    # Session shape
    unidirectional: bool = False
    unidirectional_reverse: bool = False
    exit_on_eof: bool = False
    oneshot: bool = False
    one_message: bool = False

    # Sizing & backpressure
    buffer_size: int = DEFAULT_BUFFER_SIZE
    broadcast_queue_len: int = DEFAULT_BROADCAST_QUEUE_LEN
    read_debt_handling: DebtHandling = DebtHandling.SILENT

    # Reconnect
    autoreconnect_delay: float = DEFAULT_AUTORECONNECT_DELAY

    # Transport-specific knobs
    unlink_unix_socket: bool = False
    exec_args: Tuple[str, ...] = field(default_factory=tuple)
    udp_oneshot_mode: bool = False

    # Line mode
    linemode_strip_newlines: bool = False
    linemode_strict: bool = False
    linemode_zero_terminated: bool = False
    no_auto_linemode: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> "Options":
        if self.buffer_size < 1:
            raise ConfigError(message="buffer_size must be >= 1", details={"buffer_size": self.buffer_size})
        if self.broadcast_queue_len < 1:
            raise ConfigError(
                message="broadcast_queue_len must be >= 1",
                details={"broadcast_queue_len": self.broadcast_queue_len},
            )
        if self.autoreconnect_delay < 0:
            raise ConfigError(
                message="autoreconnect_delay must be >= 0",
                details={"autoreconnect_delay": self.autoreconnect_delay},
            )
        if self.max_message_size < 1:
            raise ConfigError(
                message="max_message_size must be >= 1",
                details={"max_message_size": self.max_message_size},
            )
        if self.restrict_uri is not None and not self.restrict_uri.startswith("/"):
            raise ConfigError(message="restrict_uri must start with '/'", details={"restrict_uri": self.restrict_uri})
        if self.websocket_version is not None and not self.websocket_version.strip():
            raise ConfigError(message="websocket_version must not be empty")
        return self

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            v = getattr(self, f.name)
            out[f.name] = v.value if isinstance(v, Enum) else v
        return out


# ---------- env parsing helpers ------------------------------------------------

def _getenv(name: str) -> Optional[str]:
    v = os.getenv(ENV_PREFIX + name)
    return None if v is None else v.strip()


def _env_bool(name: str) -> Optional[bool]:
    v = _getenv(name)
    if v is None:
        return None
    return v.lower() in {"1", "true", "yes", "on"}


def _env_num(name: str, conv) -> Any:
    v = _getenv(name)
    if v is None or v == "":
        return None
    try:
        return conv(v)
    except ValueError as e:
        raise ConfigError(message=f"{ENV_PREFIX}{name} is not a valid number", details={"value": v}) from e


def _from_env() -> Dict[str, Any]:
    env: Dict[str, Any] = {
        "websocket_text_mode": _env_bool("TEXT"),
        "websocket_protocol": _getenv("PROTOCOL"),
        "websocket_dont_close": _env_bool("DONT_CLOSE"),
        "origin": _getenv("ORIGIN"),
        "restrict_uri": _getenv("RESTRICT_URI"),
        "max_message_size": _env_num("MAX_MESSAGE_SIZE", int),
        "unidirectional": _env_bool("UNIDIRECTIONAL"),
        "unidirectional_reverse": _env_bool("UNIDIRECTIONAL_REVERSE"),
        "exit_on_eof": _env_bool("EXIT_ON_EOF"),
        "oneshot": _env_bool("ONESHOT"),
        "one_message": _env_bool("ONE_MESSAGE"),
        "buffer_size": _env_num("BUFFER_SIZE", int),
        "broadcast_queue_len": _env_num("BROADCAST_QUEUE_LEN", int),
        "autoreconnect_delay": _env_num("AUTORECONNECT_DELAY", float),
        "unlink_unix_socket": _env_bool("UNLINK"),
        "udp_oneshot_mode": _env_bool("UDP_ONESHOT"),
        "websocket_version": _getenv("WEBSOCKET_VERSION"),
        "linemode_strip_newlines": _env_bool("STRIP_NEWLINES"),
        "linemode_strict": _env_bool("LINE_STRICT"),
        "linemode_zero_terminated": _env_bool("NULL_TERMINATED"),
        "no_auto_linemode": _env_bool("NO_LINE"),
    }
    debt = _getenv("DEBT_HANDLING")
    if debt:
        env["read_debt_handling"] = DebtHandling.parse(debt)
    return {k: v for k, v in env.items() if v is not None}


def load_options(base: Optional[Options] = None, **overrides: Any) -> Options:
    """
    Build validated Options: defaults (or `base`) <- environment <- overrides.

    Overrides set to None are ignored so CLI layers can pass every flag through.
    """
    values = _from_env()
    values.update({k: v for k, v in overrides.items() if v is not None})
    if "read_debt_handling" in values:
        values["read_debt_handling"] = DebtHandling.parse(values["read_debt_handling"])
    for key in ("exec_args", "custom_headers"):
        if key in values:
            values[key] = tuple(values[key])
    known = {f.name for f in fields(Options)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(message="Unknown option(s)", details={"names": sorted(unknown)})
    return replace(base or Options(), **values)
