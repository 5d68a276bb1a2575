"""
Text -> SpecNode parser.

Specifier strings are prefix-chained: ``ws-u:reuse-raw:tcp-l:127.0.0.1:8080``
is the ws-upgrade overlay over the reuse overlay over a TCP listener. Each
step takes the longest registered prefix; overlays recurse into the rest of
the string, aliases are expanded textually, leaves keep the rest as their
argument.
"""
from __future__ import annotations

from typing import Dict, List, Tuple

from .errors import ConstructionError
from .specifier import SpecifierClass, SpecNode, all_classes

__all__ = ["parse", "prefix_table"]

# Guard against alias loops.
_MAX_EXPANSIONS = 32


def prefix_table() -> List[Tuple[str, SpecifierClass]]:
    """(prefix, class) pairs, longest prefix first."""
    table: Dict[str, SpecifierClass] = {}
    for klass in all_classes():
        for p in klass.prefixes:
            table.setdefault(p, klass)
    return sorted(table.items(), key=lambda kv: len(kv[0]), reverse=True)


def _match(text: str) -> Tuple[SpecifierClass, str, str]:
    for prefix, klass in prefix_table():
        if text.startswith(prefix):
            return klass, prefix, text[len(prefix):]
    raise ConstructionError(
        message=f"Unknown address or specifier {text!r}",
        details={"hint": "use --list-specifiers to see what is supported"},
    )


def parse(text: str) -> SpecNode:
    """Parse one specifier string into a SpecNode tree."""
    if text == "-":
        text = "stdio:"
    for _ in range(_MAX_EXPANSIONS):
        klass, prefix, rest = _match(text)
        if klass.alias is not None:
            text = klass.alias + rest
            continue
        if klass.overlay:
            return SpecNode(klass.name, "", parse(rest))
        return SpecNode(klass.name, prefix + rest if klass.keep_prefix else rest)
    raise ConstructionError(message="Too many alias expansions", details={"text": text})
