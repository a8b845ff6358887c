"""
Placement Guard - Ledger Store

One SQLAlchemy engine for the access, enforcement and alert ledgers.
PostgreSQL in production; any SQLAlchemy URL works (SQLite for local runs).
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/placement_guard"
)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Request handlers run on a worker thread
        return {"connect_args": {"check_same_thread": False}}
    # Reconnect pooled connections the server has dropped
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped session. Services commit; this only closes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create the ledger tables if they do not exist."""
    from .models import db_models  # noqa: F401  (registers the tables on Base)

    Base.metadata.create_all(bind=engine)
