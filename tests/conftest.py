from __future__ import annotations

from pathlib import Path

import pytest

from db import dispose_engine, get_session_factory, init_database


@pytest.fixture
def session_factory(tmp_path: Path):
    init_database(f"sqlite:///{tmp_path / 'ping_guard.sqlite3'}")
    yield get_session_factory()
    dispose_engine()
