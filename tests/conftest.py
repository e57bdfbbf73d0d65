"""
Shared fixtures: item banks, scripted generation services and an in-memory
SQLite session factory for the SQL bank.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bank.database import Base
from bank.item_bank import InMemoryItemBank
from bank.models import BankItemRecord  # noqa: F401
from tests.helpers import CELL_ITEMS, OfflineGenerator, ScriptedGenerator, make_item


@pytest.fixture
def cell_items():
    return [make_item(text) for text in CELL_ITEMS]


@pytest.fixture
def memory_bank(cell_items):
    return InMemoryItemBank(cell_items)


@pytest.fixture
def offline_generator():
    return OfflineGenerator()


@pytest.fixture
def scripted_generator():
    return ScriptedGenerator()


@pytest.fixture
def sql_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()
