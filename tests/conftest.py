"""
Shared pytest fixtures for slot_swap tests.

Provides:
- A temporary SQLite database per test (tables created, handle connected)
- SlotStore / SwapNegotiator wired to that handle
- Three registered users: alice, bob and carol
"""

from datetime import datetime, timedelta

import pytest

from slot_swap.auth import UserCreate, create_user
from slot_swap.database import create_database, create_tables
from slot_swap.negotiator import SwapNegotiator
from slot_swap.slot_store import SlotStore

# Fixed, far-future base time keeps ordering assertions deterministic
BASE_TIME = datetime(2030, 1, 15, 9, 0)


def hours(offset: float) -> datetime:
    return BASE_TIME + timedelta(hours=offset)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'slot_swap_test.db'}"


@pytest.fixture
async def database(database_url):
    create_tables(database_url)
    db = create_database(database_url)
    await db.connect()
    yield db
    await db.disconnect()


@pytest.fixture
def store(database) -> SlotStore:
    return SlotStore(database)


@pytest.fixture
def negotiator(database, store) -> SwapNegotiator:
    return SwapNegotiator(database, store)


@pytest.fixture
async def alice(database):
    return await create_user(database, UserCreate(name="Alice Smith", email="alice@example.com", password="password123"))


@pytest.fixture
async def bob(database):
    return await create_user(database, UserCreate(name="Bob Johnson", email="bob@example.com", password="password123"))


@pytest.fixture
async def carol(database):
    return await create_user(database, UserCreate(name="Carol White", email="carol@example.com", password="password123"))
