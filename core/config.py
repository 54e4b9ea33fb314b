"""
Shared configuration for MessageVault core.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("messagevault")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _derive_effective_backends(db_backend: str, vector_backend: str) -> tuple[str, str]:
    db_effective = db_backend if db_backend in {"postgres", "sqlite"} else "postgres"
    vector_effective = vector_backend if vector_backend in {"pgvector", "numpy"} else "numpy"
    if db_effective == "sqlite":
        vector_effective = "numpy"
    return db_effective, vector_effective


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
VECTOR_BACKEND = os.environ.get("VECTOR_BACKEND", "pgvector").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/messagevault.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
    DB_BACKEND,
    VECTOR_BACKEND,
)

# Embedding settings
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "openai").strip().lower()
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
EMBEDDING_BASE_URL = os.environ.get("EMBEDDING_BASE_URL", "https://api.openai.com/v1").rstrip("/")
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIM = _get_int("EMBEDDING_DIM", 1536)
MAX_EMBEDDING_TEXT_LENGTH = _get_int("MESSAGEVAULT_MAX_EMBEDDING_TEXT_LENGTH", 8000)
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
# No retry unless explicitly configured; callers re-run embed_pending instead.
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 0)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.5)
EMBEDDING_BACKFILL_ENABLED = _get_bool("EMBEDDING_BACKFILL_ENABLED", True)
EMBEDDING_BACKFILL_INTERVAL_SECONDS = _get_int("EMBEDDING_BACKFILL_INTERVAL_SECONDS", 300)
EMBEDDING_BACKFILL_BATCH_LIMIT = _get_int("EMBEDDING_BACKFILL_BATCH_LIMIT", 100)

# Database initialization controls
AUTO_CREATE_EXTENSIONS = _get_bool("AUTO_CREATE_EXTENSIONS", True)
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Retrieval defaults and caps
GROUP_LIST_DEFAULT_LIMIT = _get_int("MESSAGEVAULT_GROUP_LIST_DEFAULT_LIMIT", 50)
KEYWORD_SEARCH_DEFAULT_LIMIT = _get_int("MESSAGEVAULT_KEYWORD_SEARCH_DEFAULT_LIMIT", 20)
KEYWORD_SEARCH_SCAN_LIMIT = _get_int("MESSAGEVAULT_KEYWORD_SEARCH_SCAN_LIMIT", 1000)
VECTOR_SEARCH_DEFAULT_LIMIT = _get_int("MESSAGEVAULT_VECTOR_SEARCH_DEFAULT_LIMIT", 10)
VECTOR_SEARCH_OVERFETCH = _get_int("MESSAGEVAULT_VECTOR_SEARCH_OVERFETCH", 3)
UNEMBEDDED_SCAN_FACTOR = _get_int("MESSAGEVAULT_UNEMBEDDED_SCAN_FACTOR", 10)
MAX_RESULT_LIMIT = _get_int("MESSAGEVAULT_MAX_RESULT_LIMIT", 1000)
MAX_BATCH_SIZE = _get_int("MESSAGEVAULT_MAX_BATCH_SIZE", 1000)
MAX_QUERY_LENGTH = _get_int("MESSAGEVAULT_MAX_QUERY_LENGTH", 4000)
MAX_METADATA_BYTES = _get_int("MESSAGEVAULT_MAX_METADATA_BYTES", 20000)


def load_embedding_settings():
    """Build the embedding settings object injected into the pipeline."""
    from core.services.message_embeddings import EmbeddingSettings

    return EmbeddingSettings(
        provider=EMBEDDING_PROVIDER,
        api_key=OPENAI_API_KEY,
        base_url=EMBEDDING_BASE_URL,
        model=EMBEDDING_MODEL,
        dimensions=EMBEDDING_DIM,
        max_input_chars=MAX_EMBEDDING_TEXT_LENGTH,
        timeout_seconds=EMBEDDING_TIMEOUT_SECONDS,
        retry_max=EMBEDDING_RETRY_MAX,
        retry_backoff_seconds=EMBEDDING_RETRY_BACKOFF_SECONDS,
    )


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if VECTOR_BACKEND not in {"pgvector", "numpy"}:
        errors.append("VECTOR_BACKEND must be 'pgvector' or 'numpy'")

    if DB_BACKEND == "sqlite" and VECTOR_BACKEND == "pgvector":
        logger.warning("VECTOR_BACKEND=pgvector requires postgres; using numpy similarity scan.")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
        DB_BACKEND,
        VECTOR_BACKEND,
    )

    try:
        load_embedding_settings().validate()
    except ValueError as exc:
        errors.append(str(exc))

    if VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from core.models import PGVECTOR_AVAILABLE

        if not PGVECTOR_AVAILABLE:
            errors.append("pgvector package is required when VECTOR_BACKEND=pgvector")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
