import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from database import DatabaseManager
from services.contact_store import InMemoryStoreBackend, SQLAlchemyStoreBackend
from services.identity_service import IdentityService


@pytest.fixture
def backend():
    return InMemoryStoreBackend()


@pytest.fixture
def service(backend):
    return IdentityService(backend=backend, lock_timeout=1, conflict_retries=1)


@pytest_asyncio.fixture
async def sqlite_manager(tmp_path):
    """DatabaseManager on a throwaway SQLite file with the schema created"""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'contacts.db'}")
    await manager.create_tables()
    yield manager
    await manager.dispose()


@pytest.fixture
def sql_service(sqlite_manager):
    return IdentityService(backend=SQLAlchemyStoreBackend(sqlite_manager), lock_timeout=1)


@pytest.fixture
def client(service):
    """TestClient with the identity service running on the in-memory store"""
    from main import app, get_identity_service

    app.dependency_overrides[get_identity_service] = lambda: service
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()
