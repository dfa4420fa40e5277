"""
Contact Store - persistence interface consumed by the identity service
Defines the store operations reconciliation needs and two backends:
SQLAlchemy (PostgreSQL / SQLite) for the running service and an in-memory
store for tests and local experiments. Soft-deleted contacts are filtered
out by every query here, never by callers.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional

from sqlalchemy import and_, or_, select, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, NotFoundError, StoreError, ValidationError
from models import Contact, PRIMARY, SECONDARY, utcnow

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


def _require_contact_info(email: Optional[str], phone: Optional[str]):
    if not email and not phone:
        raise ValidationError(
            "At least one of email or phoneNumber must be provided",
            field="contact"
        )


def _chain_order(primary_id: int, contacts: List[Contact]) -> List[Contact]:
    """Primary first, then secondaries oldest first"""
    primary = next((c for c in contacts if c.id == primary_id), None)
    if primary is None:
        raise NotFoundError(f"Primary contact {primary_id} not found", contact_id=primary_id)
    secondaries = sorted(
        (c for c in contacts if c.id != primary_id),
        key=lambda c: c.age_key()
    )
    return [primary] + secondaries


class ContactStore(ABC):
    """Operations the identity service performs within one unit of work"""

    @abstractmethod
    async def find_by_fields(self, email: Optional[str], phone: Optional[str]) -> List[Contact]:
        """Contacts whose email equals email OR phone equals phone, oldest first"""

    @abstractmethod
    async def find_by_id(self, contact_id: int) -> Optional[Contact]:
        """Contact with this id, or None"""

    @abstractmethod
    async def find_chain(self, primary_id: int) -> List[Contact]:
        """Primary followed by every contact linked to it"""

    @abstractmethod
    async def create(
        self,
        email: Optional[str],
        phone: Optional[str],
        precedence: str,
        linked_id: Optional[int] = None
    ) -> Contact:
        """Insert a contact, assigning id and timestamps"""

    @abstractmethod
    async def demote(self, contact_id: int, new_linked_id: int) -> None:
        """Turn a primary into a secondary of new_linked_id"""

    @abstractmethod
    async def relink(self, old_primary_id: int, new_primary_id: int) -> int:
        """Point every secondary of old_primary_id at new_primary_id; returns the count"""

    @abstractmethod
    async def list_contacts(self) -> List[Contact]:
        """Every contact, oldest first"""

    async def lock(self, keys: Iterable[str]) -> None:
        """Cross-process lock on keys until the unit of work ends"""


class StoreBackend(ABC):
    """Source of ContactStore units of work"""

    @abstractmethod
    def begin(self):
        """
        Async context manager yielding a ContactStore
        Changes are committed when the block exits cleanly and discarded
        otherwise.
        """


class SQLAlchemyContactStore(ContactStore):
    """ContactStore over one AsyncSession / transaction"""

    def __init__(self, session: AsyncSession, lock_timeout: Optional[float] = None):
        self.session = session
        self.lock_timeout = lock_timeout

    def _active(self):
        return select(Contact).where(Contact.deleted_at.is_(None))

    async def find_by_fields(self, email, phone):
        conditions = []
        if email:
            conditions.append(Contact.email == email)
        if phone:
            conditions.append(Contact.phone_number == phone)
        if not conditions:
            return []

        query = self._active().where(or_(*conditions)).order_by(Contact.created_at, Contact.id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_by_id(self, contact_id):
        # populate_existing so a re-read sees rows other transactions committed
        query = self._active().where(Contact.id == contact_id).execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def find_chain(self, primary_id):
        query = self._active().where(
            or_(Contact.id == primary_id, Contact.linked_id == primary_id)
        ).execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return _chain_order(primary_id, list(result.scalars().all()))

    async def create(self, email, phone, precedence, linked_id=None):
        _require_contact_info(email, phone)
        now = utcnow()
        contact = Contact(
            email=email,
            phone_number=phone,
            linked_id=linked_id,
            link_precedence=precedence,
            created_at=now,
            updated_at=now
        )
        self.session.add(contact)
        await self.session.flush()  # Get the ID
        return contact

    async def demote(self, contact_id, new_linked_id):
        contact = await self.find_by_id(contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found", contact_id=contact_id)
        contact.link_precedence = SECONDARY
        contact.linked_id = new_linked_id
        contact.updated_at = utcnow()
        await self.session.flush()

    async def relink(self, old_primary_id, new_primary_id):
        query = self._active().where(
            and_(Contact.linked_id == old_primary_id, Contact.link_precedence == SECONDARY)
        )
        result = await self.session.execute(query)
        moved = 0
        now = utcnow()
        for secondary in result.scalars().all():
            secondary.linked_id = new_primary_id
            secondary.updated_at = now
            moved += 1
        await self.session.flush()
        return moved

    async def list_contacts(self):
        result = await self.session.execute(self._active().order_by(Contact.created_at, Contact.id))
        return list(result.scalars().all())

    async def lock(self, keys):
        if self.session.bind.dialect.name != "postgresql":
            return
        if self.lock_timeout is not None:
            await self.session.execute(
                text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout * 1000)}ms'")
            )
        for key in sorted(set(keys)):
            await self.session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": key}
            )


def translate_database_error(exc: SQLAlchemyError) -> Exception:
    """Map a SQLAlchemy failure onto the reconciliation error taxonomy"""
    if isinstance(exc, DBAPIError):
        sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        if sqlstate in CONFLICT_SQLSTATES:
            return ConflictError("Concurrent update detected")
    return StoreError("Database operation failed")


class SQLAlchemyStoreBackend(StoreBackend):
    """Backend using the application's DatabaseManager sessions"""

    def __init__(self, db_manager, lock_timeout: Optional[float] = None):
        self.db_manager = db_manager
        self.lock_timeout = lock_timeout

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[SQLAlchemyContactStore]:
        try:
            async with self.db_manager.get_session() as session:
                yield SQLAlchemyContactStore(session, self.lock_timeout)
        except SQLAlchemyError as exc:
            logger.error(f"Contact store failure: {exc}")
            raise translate_database_error(exc) from exc


class InMemoryContactStore(ContactStore):
    """
    ContactStore over an InMemoryStoreBackend's rows
    Writes are visible immediately; each one is recorded in an undo log so
    the unit of work can be reverted without touching other requests' rows.
    """

    def __init__(self, backend: "InMemoryStoreBackend"):
        self.backend = backend
        self.undo_log = []

    def _active_rows(self):
        return [row for row in self.backend.rows.values() if row["deleted_at"] is None]

    def _sorted(self, rows) -> List[Contact]:
        contacts = [Contact(**row) for row in rows]
        contacts.sort(key=lambda c: c.age_key())
        return contacts

    def _update(self, row: dict, **values):
        self.undo_log.append((row["id"], dict(row)))
        row.update(values, updated_at=self.backend.clock())

    def rollback(self):
        for contact_id, previous in reversed(self.undo_log):
            if previous is None:
                self.backend.rows.pop(contact_id, None)
            else:
                self.backend.rows[contact_id] = previous
        self.undo_log = []

    async def find_by_fields(self, email, phone):
        if not email and not phone:
            return []
        return self._sorted(
            row for row in self._active_rows()
            if (email and row["email"] == email) or (phone and row["phone_number"] == phone)
        )

    async def find_by_id(self, contact_id):
        row = self.backend.rows.get(contact_id)
        if row is None or row["deleted_at"] is not None:
            return None
        return Contact(**row)

    async def find_chain(self, primary_id):
        rows = [
            row for row in self._active_rows()
            if row["id"] == primary_id or row["linked_id"] == primary_id
        ]
        return _chain_order(primary_id, [Contact(**row) for row in rows])

    async def create(self, email, phone, precedence, linked_id=None):
        _require_contact_info(email, phone)
        contact_id = self.backend.add(email, phone, precedence, linked_id)
        self.undo_log.append((contact_id, None))
        return Contact(**self.backend.rows[contact_id])

    async def demote(self, contact_id, new_linked_id):
        row = self.backend.rows.get(contact_id)
        if row is None or row["deleted_at"] is not None:
            raise NotFoundError(f"Contact {contact_id} not found", contact_id=contact_id)
        self._update(row, link_precedence=SECONDARY, linked_id=new_linked_id)

    async def relink(self, old_primary_id, new_primary_id):
        moved = 0
        for row in self._active_rows():
            if row["linked_id"] == old_primary_id and row["link_precedence"] == SECONDARY:
                self._update(row, linked_id=new_primary_id)
                moved += 1
        return moved

    async def list_contacts(self):
        return self._sorted(self._active_rows())


class InMemoryStoreBackend(StoreBackend):
    """
    Dictionary-backed store for tests and local runs
    Ids are never reused, like a database sequence.
    """

    store_class = InMemoryContactStore

    def __init__(self, clock: Callable = utcnow):
        self.rows: Dict[int, dict] = {}
        self.next_id = 1
        self.clock = clock

    def add(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        precedence: str = PRIMARY,
        linked_id: Optional[int] = None,
        created_at=None,
        deleted_at=None
    ) -> int:
        """Insert a row directly, bypassing reconciliation; returns its id"""
        contact_id = self.next_id
        self.next_id += 1
        created_at = created_at or self.clock()
        self.rows[contact_id] = {
            "id": contact_id,
            "email": email,
            "phone_number": phone,
            "linked_id": linked_id,
            "link_precedence": precedence,
            "created_at": created_at,
            "updated_at": created_at,
            "deleted_at": deleted_at,
        }
        return contact_id

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[InMemoryContactStore]:
        store = self.store_class(self)
        try:
            yield store
        except BaseException:
            store.rollback()
            raise
