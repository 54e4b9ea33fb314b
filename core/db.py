"""
Engine/session lifecycle for the message archive, plus Alembic schema checks.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import core.config as config


class DB:
    """Process-wide engine and session factory, populated by init_db()."""

    engine: Optional[Engine] = None
    SessionLocal: Optional[sessionmaker] = None


def build_engine(url: str) -> Engine:
    kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        # sessions are handed to the threadpool by async routes
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


def bind_engine(engine: Engine) -> None:
    DB.engine = engine
    DB.SessionLocal = sessionmaker(bind=engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized")
    db = DB.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def dispose_db() -> None:
    if DB.engine is not None:
        DB.engine.dispose()
    DB.engine = None
    DB.SessionLocal = None


def _get_alembic_config():
    from alembic.config import Config

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    alembic_cfg = Config(os.path.join(base_dir, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(base_dir, "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", config.DATABASE_URL)
    return alembic_cfg


def get_schema_revisions(engine: Engine) -> tuple[Optional[str], Optional[str]]:
    """Return (current, head) Alembic revisions for the messages schema."""
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    script = ScriptDirectory.from_config(_get_alembic_config())
    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()
    return current, script.get_current_head()


def _ensure_schema_up_to_date(engine: Engine) -> None:
    from alembic import command

    current_rev, head_rev = get_schema_revisions(engine)
    if current_rev == head_rev:
        return
    if not config.AUTO_MIGRATE_ON_STARTUP:
        raise RuntimeError(
            f"Message schema out of date (current={current_rev}, expected={head_rev}). "
            "Run 'alembic upgrade head' or set AUTO_MIGRATE_ON_STARTUP=true."
        )

    config.logger.info(f"Migrating message schema {current_rev} -> {head_rev}")
    command.upgrade(_get_alembic_config(), "head")
    new_current, _ = get_schema_revisions(engine)
    if new_current != head_rev:
        raise RuntimeError("Database migration did not reach expected revision")


def _uses_pgvector() -> bool:
    return config.DB_BACKEND_EFFECTIVE == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"


def _ensure_vector_extension(engine: Engine) -> None:
    if not (config.AUTO_CREATE_EXTENSIONS and _uses_pgvector()):
        config.logger.info("Skipping pgvector extension creation")
        return
    with engine.connect() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        conn.commit()
    config.logger.info("pgvector extension ready")


def check_db_health() -> dict:
    """Probe connectivity, the pgvector extension and the schema revision."""
    if DB.engine is None:
        return {"ok": False, "error": "db_not_initialized"}

    ext_version = None
    try:
        with DB.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            if _uses_pgvector():
                ext_version = conn.execute(
                    text("SELECT extversion FROM pg_extension WHERE extname = 'vector'")
                ).scalar()
    except Exception as exc:
        return {"ok": False, "error": str(exc)}

    current_rev = head_rev = None
    if config.DATABASE_URL:
        current_rev, head_rev = get_schema_revisions(DB.engine)
    return {
        "ok": head_rev is None or current_rev == head_rev,
        "backend": config.DB_BACKEND_EFFECTIVE,
        "vector_backend": config.VECTOR_BACKEND_EFFECTIVE,
        "pgvector_version": ext_version,
        "schema_revision": current_rev,
        "schema_expected": head_rev,
    }


def init_db() -> None:
    """Validate config, connect, and bring the messages schema to head."""
    config.validate_and_prepare_config()

    config.logger.info(f"Connecting to {config.DB_BACKEND_EFFECTIVE} database...")
    engine = build_engine(config.DATABASE_URL)
    bind_engine(engine)
    # the vector column migration needs the extension first
    _ensure_vector_extension(engine)
    _ensure_schema_up_to_date(engine)

    config.logger.info("Database initialized")
