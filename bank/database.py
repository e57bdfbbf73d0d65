"""
Database connection and session management
Postgres connection for the item bank

The engine is created on first use so importing the package never opens a
connection.
"""

import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()

# Database URL from environment
POSTGRES_USER = os.getenv("POSTGRES_USER", "academic_user")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "academic_pass")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")
POSTGRES_DB = os.getenv("POSTGRES_DB", "item_bank")

DATABASE_URL = os.getenv(
    "ITEM_BANK_DATABASE_URL",
    f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

# Base class for declarative models
Base = declarative_base()

_engine = None
_SessionLocal = None


def get_engine(url: str = None) -> Engine:
    global _engine
    if url is not None:
        return create_engine(url, pool_pre_ping=True)
    if _engine is None:
        _engine = create_engine(
            DATABASE_URL,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10
        )
    return _engine


def get_session_factory():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def get_db():
    """
    Yields a database session and ensures it's closed after use
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine = None) -> None:
    """Create the item bank tables if they do not exist."""
    from bank import models  # noqa: F401  (registers tables on Base)
    Base.metadata.create_all(bind=engine or get_engine())
