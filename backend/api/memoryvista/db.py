# backend/api/memoryvista/db.py
from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError

from memoryvista.errors import StoreUnavailable
from memoryvista.settings import load_env_once

_engine: Engine | None = None


def database_url() -> str:
    """DATABASE_URL (or DB_URL) after the usual .env lookup. Shared with alembic."""
    load_env_once()

    db_url = os.getenv("DATABASE_URL") or os.getenv("DB_URL")
    if not db_url:
        backend_api_dir = Path(__file__).resolve().parents[1]
        tried = [
            f"ENV_PATH={os.getenv('ENV_PATH')}",
            str(backend_api_dir / ".env"),
            str(Path.cwd() / ".env"),
        ]
        raise RuntimeError(
            "DATABASE_URL is not set. Ensure it exists in backend/api/.env or set ENV_PATH.\n"
            f"Tried: {', '.join(tried)}"
        )
    return db_url


def get_engine() -> Engine:
    global _engine

    if _engine is not None:
        return _engine

    _engine = create_engine(database_url(), pool_pre_ping=True, future=True)
    return _engine


def set_engine(engine: Engine | None) -> None:
    """Swap the process-wide engine (tests, scripts)."""
    global _engine
    _engine = engine


def db_ping(engine: Engine) -> None:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailable() from exc
