from __future__ import annotations

import os
import socket
from contextlib import closing

import pytest

from wspipe.constants import ENV_PREFIX
from wspipe.options import Options


def find_free_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep WSPIPE_* variables of the surrounding shell out of the tests."""
    for name in list(os.environ):
        if name.startswith(ENV_PREFIX):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def free_port() -> int:
    return find_free_port()


@pytest.fixture
def options() -> Options:
    return Options()


@pytest.fixture
def errors():
    """A list-backed error sink: pass `errors.append` to serve()."""
    return []
