"""Sdílené fixtures pro testy."""

import pytest
from whence.state.store import Store


@pytest.fixture
def store(tmp_path):
    """Prázdné SQLite úložiště v dočasné složce."""
    s = Store(tmp_path / "whence.db")
    yield s
    s.close()
