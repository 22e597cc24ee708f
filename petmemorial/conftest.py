# petmemorial/conftest.py
import os
import tempfile
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file unless a test database is provided.
# Must run before any petmemorial module reads settings.
_DEFAULT_DB_PATH = Path(tempfile.gettempdir()) / f"petmemorial_test_{os.getpid()}.db"
os.environ["ENV"] = "test"
os.environ.setdefault("TEST_DATABASE_URL", f"sqlite:///{_DEFAULT_DB_PATH}")


@pytest.fixture(scope="session")
def db_url():
    """TEST_DATABASE_URL used for this session."""
    return os.environ["TEST_DATABASE_URL"]


@pytest.fixture(scope="session", autouse=True)
def create_tables(db_url):
    """
    Create all database tables once per test session.

    Starts from an empty schema and removes the default SQLite file afterwards.
    """
    from petmemorial.core.database import init_engine, drop_all_tables, create_all_tables, get_engine

    init_engine(db_url)
    drop_all_tables()
    create_all_tables()
    yield
    get_engine().dispose()
    if db_url == f"sqlite:///{_DEFAULT_DB_PATH}" and _DEFAULT_DB_PATH.exists():
        _DEFAULT_DB_PATH.unlink()


@pytest.fixture(scope="function", autouse=True)
def reset_db(create_tables):
    """Delete all rows before each test so every test starts from a clean slate."""
    from petmemorial.core.database import clear_all_rows

    clear_all_rows()
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from petmemorial.main import app

    return TestClient(app)


@pytest.fixture
def candle():
    """The default catalog gift (20 coins per month)."""
    from petmemorial.features.gifts.service import list_catalog

    return next(item for item in list_catalog() if item.code == "candle")


@pytest.fixture
def make_pet():
    """Factory creating a memorial owned by `owner_id`."""
    from petmemorial.features.pets.service import create_pet
    from petmemorial.models.pet import PetCreateRequest

    def _make(owner_id: str = "pet-owner", **fields):
        fields.setdefault("name", "Barsik")
        return create_pet(PetCreateRequest(owner_id=owner_id, **fields))

    return _make


@pytest.fixture
def fund():
    """Factory giving an owner a starting balance through the wallet."""
    from petmemorial.features.wallet.service import top_up

    def _fund(owner_id: str, amount: int) -> int:
        return top_up(owner_id, amount).coin_balance

    return _fund
