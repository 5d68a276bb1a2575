"""
Specifiers: named, possibly nested descriptions of one endpoint or transform.

The parsing layer hands in a tree of :class:`SpecNode` (class name, argument,
optional inner node). :func:`build_specifier` resolves it against the closed
set of registered :class:`Specifier` classes; each class carries static
metadata (:class:`SpecifierClass`) and one uniform entry point,
``construct(cp) -> PeerConstructor``.
"""
from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Tuple, Type

from .constructor import PeerConstructor
from .errors import ConstructionError
from .options import Options
from .state import ProgramState

__all__ = [
    "MessageBoundary",
    "Multiconnect",
    "SpecifierClass",
    "SpecNode",
    "Specifier",
    "L2rMode",
    "LeftSpecToRightSpec",
    "L2rUser",
    "ConstructParams",
    "register",
    "register_alias",
    "lookup_class",
    "all_classes",
    "build_specifier",
]


class MessageBoundary(Enum):
    STREAM_ORIENTED = "stream"
    MESSAGE_ORIENTED = "message"


class Multiconnect(Enum):
    SINGLE = "single"
    MULTI = "multi"
    DEPENDS_ON_INNER = "inner"


@dataclass(frozen=True)
class SpecifierClass:
    """Static metadata of one specifier kind."""

    name: str
    prefixes: Tuple[str, ...]
    overlay: bool = False
    message_boundary: MessageBoundary = MessageBoundary.STREAM_ORIENTED
    multiconnect: Multiconnect = Multiconnect.SINGLE
    help: str = ""
    # Alias classes expand to `alias + arg` instead of constructing anything.
    alias: Optional[str] = None
    # Pass the matched prefix through as part of the argument (URL-like forms).
    keep_prefix: bool = False


@dataclass(frozen=True)
class SpecNode:
    """Parse result consumed by the engine; never interpreted as raw text."""

    class_name: str
    arg: str = ""
    inner: Optional["SpecNode"] = None

    def __str__(self) -> str:
        if self.inner is not None:
            return f"{self.class_name}({self.inner})"
        return f"{self.class_name}({self.arg!r})"


# --------------------------- #
# Left-to-right side channel  #
# --------------------------- #


class L2rMode(Enum):
    FILL_IN = "fill-in"
    READ_FROM = "read-from"


@dataclass
class LeftSpecToRightSpec:
    """Connection metadata forwarded from the left specifier to the right one."""

    uri: Optional[str] = None
    client_addr: Optional[str] = None


@dataclass
class L2rUser:
    mode: L2rMode
    info: LeftSpecToRightSpec

    def fill(self, **values: Optional[str]) -> None:
        if self.mode is not L2rMode.FILL_IN:
            return
        for k, v in values.items():
            setattr(self.info, k, v)

    def read(self) -> Optional[LeftSpecToRightSpec]:
        return self.info if self.mode is L2rMode.READ_FROM else None


@dataclass
class ConstructParams:
    """Per-construction-call context."""

    loop: asyncio.AbstractEventLoop
    options: Options
    state: ProgramState
    l2r: L2rUser = field(default_factory=lambda: L2rUser(L2rMode.FILL_IN, LeftSpecToRightSpec()))

    @classmethod
    def pair(
        cls,
        loop: asyncio.AbstractEventLoop,
        options: Options,
        state: ProgramState,
    ) -> Tuple["ConstructParams", "ConstructParams"]:
        """Params for the left and right specifier sharing one side channel."""
        info = LeftSpecToRightSpec()
        left = cls(loop, options, state, L2rUser(L2rMode.FILL_IN, info))
        right = cls(loop, options, state, L2rUser(L2rMode.READ_FROM, info))
        return left, right


# --------------------------- #
# Specifier base & registry   #
# --------------------------- #


class Specifier(abc.ABC):
    klass: ClassVar[SpecifierClass]

    def __init__(self, arg: str = "", inner: Optional["Specifier"] = None):
        self.arg = arg
        self.inner = inner

    @classmethod
    def from_node(cls, arg: str, inner: Optional["Specifier"]) -> "Specifier":
        """Validate the argument and build an instance. Override to parse `arg`."""
        return cls(arg, inner)

    @abc.abstractmethod
    def construct(self, cp: ConstructParams) -> PeerConstructor:
        ...

    def require_inner(self) -> "Specifier":
        """The wrapped specifier of an overlay."""
        if self.inner is None:
            raise ConstructionError(
                message=f"{self.klass.name} is an overlay and needs an inner specifier",
                details={"class": self.klass.name},
            )
        return self.inner

    def is_multiconnect(self) -> bool:
        mc = self.klass.multiconnect
        if mc is Multiconnect.DEPENDS_ON_INNER:
            return self.inner is not None and self.inner.is_multiconnect()
        return mc is Multiconnect.MULTI

    def __repr__(self) -> str:
        if self.inner is not None:
            return f"{type(self).__name__}({self.inner!r})"
        return f"{type(self).__name__}({self.arg!r})"


_REGISTRY: Dict[str, Type[Specifier]] = {}
_ALIASES: Dict[str, SpecifierClass] = {}


def register(cls: Type[Specifier]) -> Type[Specifier]:
    """Class decorator adding a Specifier to the registry."""
    name = cls.klass.name
    if name in _REGISTRY and _REGISTRY[name] is not cls:
        raise RuntimeError(f"duplicate specifier class {name!r}")
    _REGISTRY[name] = cls
    return cls


def register_alias(klass: SpecifierClass) -> SpecifierClass:
    if klass.alias is None:
        raise ValueError("alias classes need an expansion")
    _ALIASES[klass.name] = klass
    return klass


def _ensure_loaded() -> None:
    # Importing the package registers every built-in class.
    from . import peers  # noqa: F401


def lookup_class(name: str) -> Type[Specifier]:
    _ensure_loaded()
    try:
        return _REGISTRY[name]
    except KeyError:
        raise ConstructionError.unknown_class(name) from None


def all_classes() -> List[SpecifierClass]:
    """Every registered class and alias, in registration order."""
    _ensure_loaded()
    return [c.klass for c in _REGISTRY.values()] + list(_ALIASES.values())


def build_specifier(node: SpecNode) -> Specifier:
    cls = lookup_class(node.class_name)
    inner: Optional[Specifier] = None
    if cls.klass.overlay:
        if node.inner is None:
            raise ConstructionError(
                message=f"{node.class_name} is an overlay and needs an inner specifier",
                details={"class": node.class_name},
            )
        inner = build_specifier(node.inner)
    elif node.inner is not None:
        raise ConstructionError(
            message=f"{node.class_name} does not take an inner specifier",
            details={"class": node.class_name},
        )
    return cls.from_node(node.arg, inner)
