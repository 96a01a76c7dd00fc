from datetime import datetime, timezone

import pytest

from queuectl.db import get_connection, init_db

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("QUEUECTL_HOME", str(tmp_path))
    init_db()
    return tmp_path


@pytest.fixture
def conn(home):
    c = get_connection()
    yield c
    c.close()
