"""
wspipe: duplex pipe engine.

The engine entry points are loaded on first attribute access, so
`import wspipe` alone does not register every transport.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .version import __version__, git_describe

__all__ = [
    "__version__",
    "git_describe",
    # Lazy re-exports (see __getattr__)
    "Options",
    "load_options",
    "serve",
    "parse",
    "build_specifier",
]

if TYPE_CHECKING:
    from .options import Options, load_options
    from .session import serve
    from .specifier import build_specifier
    from .specparse import parse


def __getattr__(name: str):
    if name in ("Options", "load_options"):
        from . import options

        return getattr(options, name)
    if name == "serve":
        from .session import serve

        return serve
    if name == "parse":
        from .specparse import parse

        return parse
    if name == "build_specifier":
        from .specifier import build_specifier

        return build_specifier
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
