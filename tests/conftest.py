from datetime import date, datetime

import pytest

from app import create_app
from store import AttendanceStore

FIXED_NOW = datetime(2026, 3, 2, 9, 0, 0)
TODAY = date(2026, 3, 2)


@pytest.fixture
def store(tmp_path):
    return AttendanceStore(str(tmp_path / "test.db"), clock=lambda: FIXED_NOW)


@pytest.fixture
def client(store):
    app = create_app(store=store)
    app.config["TESTING"] = True
    return app.test_client()
