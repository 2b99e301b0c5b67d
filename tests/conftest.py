"""Pytest configuration for test isolation.

Settings are read from ``LEDGER_IMPORT_*`` environment variables, and the CLI
additionally loads a ``.env`` from the working directory. To keep tests
hermetic, every test starts with those variables removed and runs from its
own temporary directory.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop inherited ``LEDGER_IMPORT_*`` settings and chdir into ``tmp_path``."""

    for key in list(os.environ):
        if key.startswith("LEDGER_IMPORT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
