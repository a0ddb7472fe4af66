from __future__ import annotations

import logging
import os

import pytest


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep developer shells (CW_* knobs, Kite credentials, .env) out of the tests."""
    for name in list(os.environ):
        if name.startswith(("CW_", "KITE_")):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CW_SKIP_DOTENV", "1")
    yield


@pytest.fixture()
def restore_root_logging():
    """For tests that call `setup_logging`, which replaces the root handlers."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for h in root.handlers[:]:
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
