from __future__ import annotations

import os
from contextlib import contextmanager
from collections.abc import Generator

from sqlalchemy.orm import Session

from app.eqpqiq.db import build_engine, build_sessionmaker, normalize_db_url

__all__ = ["normalize_db_url", "resolve_db_url", "script_session"]


def resolve_db_url(database_url: str | None = None) -> str:
    return normalize_db_url(database_url or os.environ.get("DATABASE_URL") or "sqlite:///eqpqiq.db")


@contextmanager
def script_session(db_url: str) -> Generator[Session, None, None]:
    """Standalone session for release/seed scripts; does not build the Flask app."""
    engine = build_engine(db_url)
    s = build_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
