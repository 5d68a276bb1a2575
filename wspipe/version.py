from __future__ import annotations

import os
import subprocess
from importlib import metadata
from pathlib import Path

__version__ = "0.1.0"

__all__ = ["__version__", "installed_version", "git_describe", "version_with_git"]

_CHECKOUT = Path(__file__).resolve().parent.parent


def installed_version() -> str:
    """Version recorded by the installed distribution, or the source constant."""
    try:
        return metadata.version("wspipe")
    except metadata.PackageNotFoundError:
        return __version__


def git_describe(default: str = "") -> str:
    """
    Short revision of the source checkout wspipe runs from.

    WSPIPE_GIT_DESCRIBE overrides the lookup (release builds without .git).
    Outside a checkout, or without git, `default` is returned.
    """
    override = os.getenv("WSPIPE_GIT_DESCRIBE")
    if override:
        return override
    if not (_CHECKOUT / ".git").exists():
        return default
    try:
        out = subprocess.run(
            ["git", "describe", "--always", "--dirty"],
            cwd=_CHECKOUT,
            capture_output=True,
            check=True,
            text=True,
        ).stdout.strip()
    except (OSError, subprocess.CalledProcessError):
        return default
    return out or default


def version_with_git() -> str:
    """What `wspipe --version` prints, e.g. `0.1.0` or `0.1.0+g1a2b3c4`."""
    rev = git_describe()
    return f"{installed_version()}+{rev}" if rev else installed_version()
