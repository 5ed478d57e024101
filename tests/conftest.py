from datetime import datetime

import pytest

import db


@pytest.fixture
def fresh_db(tmp_path, monkeypatch):
    """Point the store at a throwaway SQLite file with the plan catalog seeded."""
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "gym-test.db")
    db.init_db()
    return db


@pytest.fixture
def now():
    return datetime(2025, 1, 29, 9, 0, 0)
