"""
SQLAlchemy contact store tests, run against a temporary SQLite database
"""

from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError

from errors import ConflictError, StoreError, ValidationError
from models import Contact, PRIMARY, SECONDARY
from services.contact_store import SQLAlchemyStoreBackend, translate_database_error


async def count_contacts(manager):
    async with manager.get_session() as session:
        return await session.scalar(select(func.count()).select_from(Contact))


@pytest.mark.asyncio
async def test_create_and_find(sqlite_manager):
    backend = SQLAlchemyStoreBackend(sqlite_manager)

    async with backend.begin() as store:
        primary = await store.create("a@x.com", "1111111", PRIMARY)
        secondary = await store.create(None, "2222222", SECONDARY, linked_id=primary.id)

    async with backend.begin() as store:
        by_email = await store.find_by_fields("a@x.com", None)
        by_either = await store.find_by_fields("a@x.com", "2222222")
        chain = await store.find_chain(primary.id)
        missing = await store.find_by_id(999)

    assert [c.id for c in by_email] == [primary.id]
    assert [c.id for c in by_either] == [primary.id, secondary.id]
    assert [c.id for c in chain] == [primary.id, secondary.id]
    assert chain[0].created_at is not None
    assert missing is None


@pytest.mark.asyncio
async def test_find_by_fields_without_values_returns_nothing(sqlite_manager):
    async with SQLAlchemyStoreBackend(sqlite_manager).begin() as store:
        assert await store.find_by_fields(None, None) == []


@pytest.mark.asyncio
async def test_create_requires_email_or_phone(sqlite_manager):
    with pytest.raises(ValidationError):
        async with SQLAlchemyStoreBackend(sqlite_manager).begin() as store:
            await store.create(None, None, PRIMARY)


@pytest.mark.asyncio
async def test_soft_deleted_rows_are_invisible(sqlite_manager):
    async with sqlite_manager.get_session() as session:
        session.add(Contact(
            email="gone@x.com",
            link_precedence=PRIMARY,
            deleted_at=datetime(2024, 1, 1)
        ))

    async with SQLAlchemyStoreBackend(sqlite_manager).begin() as store:
        assert await store.find_by_fields("gone@x.com", None) == []
        assert await store.find_by_id(1) is None
        assert await store.list_contacts() == []


@pytest.mark.asyncio
async def test_demote_and_relink(sqlite_manager):
    backend = SQLAlchemyStoreBackend(sqlite_manager)
    async with backend.begin() as store:
        a = await store.create("a@x.com", None, PRIMARY)
        b = await store.create("b@x.com", None, PRIMARY)
        b2 = await store.create("b2@x.com", None, SECONDARY, linked_id=b.id)

    async with backend.begin() as store:
        await store.demote(b.id, a.id)
        moved = await store.relink(b.id, a.id)

    assert moved == 1
    async with backend.begin() as store:
        chain = await store.find_chain(a.id)
        assert [c.id for c in chain] == [a.id, b.id, b2.id]
        assert all(c.linked_id == a.id for c in chain[1:])
        assert chain[1].link_precedence == SECONDARY


@pytest.mark.asyncio
async def test_failed_unit_of_work_is_rolled_back(sqlite_manager):
    with pytest.raises(RuntimeError):
        async with SQLAlchemyStoreBackend(sqlite_manager).begin() as store:
            await store.create("a@x.com", None, PRIMARY)
            raise RuntimeError("boom")

    assert await count_contacts(sqlite_manager) == 0


@pytest.mark.asyncio
async def test_lock_is_noop_outside_postgres(sqlite_manager):
    async with SQLAlchemyStoreBackend(sqlite_manager).begin() as store:
        await store.lock(["email:a@x.com"])


class FakeDriverError(Exception):
    def __init__(self, sqlstate):
        super().__init__(sqlstate)
        self.sqlstate = sqlstate


@pytest.mark.parametrize("sqlstate,expected", [
    ("40001", ConflictError),
    ("40P01", ConflictError),
    ("55P03", ConflictError),
    ("08006", StoreError),
])
def test_translate_database_error(sqlstate, expected):
    exc = OperationalError("SELECT 1", {}, FakeDriverError(sqlstate))
    assert isinstance(translate_database_error(exc), expected)


def test_translate_database_error_without_driver_details():
    assert isinstance(translate_database_error(DBAPIError("SELECT 1", {}, Exception("gone"))), StoreError)


@pytest.mark.asyncio
async def test_reconciliation_scenarios_on_sqlite(sql_service, sqlite_manager):
    first = await sql_service.resolve("doc@zamazon.com", "+1234567890")
    assert first.secondaryContactIds == []

    second = await sql_service.resolve("doc@zamazon.com", "+0987654321")
    assert second.primaryContactId == first.primaryContactId
    assert second.phoneNumbers == ["+1234567890", "+0987654321"]
    assert len(second.secondaryContactIds) == 1

    again = await sql_service.resolve("doc@zamazon.com", "+0987654321")
    assert again == second
    assert await count_contacts(sqlite_manager) == 2


@pytest.mark.asyncio
async def test_merge_on_sqlite(sql_service, sqlite_manager):
    a = await sql_service.resolve("a@x.com", None)
    b = await sql_service.resolve(None, "1110000")
    b_child = await sql_service.resolve("b@x.com", "1110000")

    view = await sql_service.resolve("a@x.com", "1110000")

    assert view.primaryContactId == a.primaryContactId
    assert view.secondaryContactIds == [b.primaryContactId, b_child.secondaryContactIds[0]]
    assert view.emails == ["a@x.com", "b@x.com"]
    assert view.phoneNumbers == ["1110000"]
    assert await count_contacts(sqlite_manager) == 3

    records = await sql_service.list_contacts()
    assert [r.linkPrecedence for r in records] == [PRIMARY, SECONDARY, SECONDARY]
    assert {r.linkedId for r in records[1:]} == {a.primaryContactId}
