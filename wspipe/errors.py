from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

__all__ = [
    "PipeErrorCode",
    "PipeError",
    "ConstructionError",
    "ConnectFailure",
    "FramingViolation",
    "UnsupportedOperation",
    "TransferError",
    "ConfigError",
    "as_error_dict",
]


class PipeErrorCode:
    """
    Canonical string codes for wspipe errors.
    Kept stable for logs/metrics and for the error sink.
    """

    GENERIC = "PIPE_ERROR"
    CONSTRUCTION = "CONSTRUCTION_ERROR"
    CONNECT_FAILED = "CONNECT_FAILED"
    FRAMING_VIOLATION = "FRAMING_VIOLATION"
    UNSUPPORTED = "UNSUPPORTED_OPERATION"
    TRANSFER = "TRANSFER_ERROR"
    CONFIG = "CONFIG_ERROR"


@dataclass
class PipeError(Exception):
    """
    Base class for wspipe errors with structured context.

    Attributes:
        message: Human-friendly message.
        code: Stable machine-readable code (see PipeErrorCode).
        retryable: Whether a reconnect wrapper may retry after this error.
        cause: Underlying exception (not serialized by default).
        details: Extra structured context (specifier, address, direction, ...).
    """

    message: str
    code: str = PipeErrorCode.GENERIC
    retryable: bool = False
    cause: Optional[BaseException] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.details, dict) and isinstance(self.details, Mapping):
            self.details = dict(self.details)

    def __str__(self) -> str:
        extra = "".join(f" {k}={v}" for k, v in self.details.items())
        return f"[{self.code}] {self.message}{extra}"

    def to_dict(self, include_cause: bool = False) -> Dict[str, Any]:
        d = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details or {},
        }
        if include_cause and self.cause is not None:
            d["cause"] = repr(self.cause)
        return d


@dataclass
class ConstructionError(PipeError):
    """Unresolvable or malformed specifier node."""

    code: str = PipeErrorCode.CONSTRUCTION

    @staticmethod
    def unknown_class(name: str) -> "ConstructionError":
        return ConstructionError(
            message=f"Unknown specifier class {name!r}",
            details={"class": name},
        )

    @staticmethod
    def bad_argument(name: str, arg: str, reason: str) -> "ConstructionError":
        return ConstructionError(
            message=f"Bad argument for {name}: {reason}",
            details={"class": name, "arg": arg},
        )


@dataclass
class ConnectFailure(PipeError):
    """Transport-level failure to establish a Peer."""

    code: str = PipeErrorCode.CONNECT_FAILED
    retryable: bool = True


@dataclass
class FramingViolation(PipeError):
    """A message could not be delivered within one read call under the ERROR debt policy."""

    code: str = PipeErrorCode.FRAMING_VIOLATION

    @staticmethod
    def message_split(message_len: int, capacity: int) -> "FramingViolation":
        return FramingViolation(
            message=f"Incoming message too long ({message_len} > {capacity})",
            details={"message_len": message_len, "capacity": capacity},
        )


@dataclass
class UnsupportedOperation(PipeError):
    """Operation not available on this Peer half (e.g. writing into a broadcast)."""

    code: str = PipeErrorCode.UNSUPPORTED


@dataclass
class TransferError(PipeError):
    """Generic failure while copying between two Peers."""

    code: str = PipeErrorCode.TRANSFER
    retryable: bool = True


@dataclass
class ConfigError(PipeError):
    """Invalid Options value."""

    code: str = PipeErrorCode.CONFIG


def as_error_dict(exc: BaseException, include_cause: bool = False) -> Dict[str, Any]:
    """
    Convert an exception to a structured dict suitable for logs and the error sink.
    Unknown exceptions are wrapped as a generic PipeError.
    """
    if isinstance(exc, PipeError):
        return exc.to_dict(include_cause=include_cause)
    wrapped = PipeError(
        message=str(exc) or exc.__class__.__name__,
        code=PipeErrorCode.GENERIC,
        cause=exc,
    )
    return wrapped.to_dict(include_cause=include_cause)
