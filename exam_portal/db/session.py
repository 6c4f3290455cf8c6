# exam_portal/db/session.py
# SQLAlchemy setup. The URL comes from DATABASE_URL in .env.

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from exam_portal.config import settings

# Supabase Postgres, e.g. postgresql+psycopg2://...
DATABASE_URL = settings.database_url

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set.")


def engine_options(url: str, timeout_seconds: float) -> dict:
    """
    Engine kwargs with a bounded wait on every store call.
    Postgres gets connect/statement timeouts, SQLite a lock timeout.
    """
    if url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False, "timeout": timeout_seconds},
        }
    return {
        "pool_pre_ping": True,   # detect dropped connections
        "pool_size": 30,         # matches the Supabase session-mode pool
        "max_overflow": 0,
        "pool_timeout": timeout_seconds,
        "connect_args": {
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        },
    }


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL, settings.store_timeout_seconds))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
