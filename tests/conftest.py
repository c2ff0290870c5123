"""Pytest configuration for path setup and shared fixtures.

The test suite imports ``tradeguard`` from ``tradeguard/src`` and the
helpers under ``tests/helpers``.  When pytest is executed as an installed
script, neither directory is automatically on ``sys.path``, so both are
added here before collection.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest_asyncio


ROOT = Path(__file__).resolve().parents[1]

for path in (ROOT / "tradeguard" / "src", ROOT / "tests"):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from tradeguard.services.db import create_engine_from_uri, init_db  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    """A fresh SQLite database with every table created."""
    eng = create_engine_from_uri(f"sqlite+aiosqlite:///{tmp_path / 'tradeguard.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()
