import pytest
from sqlalchemy import text

import core.config as config
from core.db import DB, check_db_health, session_scope


def test_session_scope_requires_initialized_db(monkeypatch):
    monkeypatch.setattr(DB, "SessionLocal", None)
    with pytest.raises(RuntimeError, match="not initialized"):
        with session_scope():
            pass


def test_session_scope_yields_working_session(server_db):
    with session_scope() as db:
        assert db.execute(text("SELECT 1")).scalar() == 1


def test_health_reports_uninitialized_db(monkeypatch):
    monkeypatch.setattr(DB, "engine", None)
    assert check_db_health() == {"ok": False, "error": "db_not_initialized"}


def test_health_reports_sqlite_backend(server_db, monkeypatch):
    monkeypatch.setattr(config, "DATABASE_URL", None)
    health = check_db_health()
    assert health["ok"] is True
    assert health["backend"] == "sqlite"
    assert health["vector_backend"] == "numpy"
    assert health["pgvector_version"] is None
