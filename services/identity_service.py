"""
Identity Service - Core business logic for identity reconciliation
Handles contact linking, primary/secondary relationships, chain merging
and response building. Primary contact info always comes first in the
response arrays.
"""

import logging
from contextlib import AsyncExitStack
from typing import List, Optional

from config import settings
from database import db_manager
from errors import ConflictError, NotFoundError
from models import Contact, PRIMARY, SECONDARY
from schemas.identify import ContactRecord, ContactResponse, IdentifyRequest, IdentifyResponse
from schemas.validators import validate_observation
from services.contact_store import ContactStore, SQLAlchemyStoreBackend, StoreBackend
from services.locks import KeyedLocks, chain_keys, fingerprint_keys

logger = logging.getLogger(__name__)


class IdentityService:
    """
    Core service for identity reconciliation logic
    Handles all business rules for linking customer contacts

    Concurrency: every resolve holds in-process locks on its email and phone
    (and on the chains it is about to modify) and runs its reads and writes
    in a single store transaction, which on PostgreSQL also takes advisory
    locks on the same keys. A conflict is retried conflict_retries times
    before ConflictError reaches the caller.
    """

    def __init__(
        self,
        backend: Optional[StoreBackend] = None,
        locks: Optional[KeyedLocks] = None,
        lock_timeout: Optional[float] = None,
        conflict_retries: Optional[int] = None
    ):
        self.lock_timeout = settings.LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
        self.conflict_retries = settings.CONFLICT_RETRIES if conflict_retries is None else conflict_retries
        self.backend = backend or SQLAlchemyStoreBackend(db_manager, lock_timeout=self.lock_timeout)
        self.locks = locks or KeyedLocks()

    async def identify_contact(self, request: IdentifyRequest) -> IdentifyResponse:
        """Reconcile an /identify request and wrap the consolidated view"""
        contact = await self.resolve(request.email, request.phoneNumber)
        return IdentifyResponse(contact=contact)

    async def resolve(self, email: Optional[str] = None, phone: Optional[str] = None) -> ContactResponse:
        """
        Main orchestration method for identity reconciliation

        Algorithm:
        1. Validate input (before touching the store)
        2. Find existing contacts matching email or phone
        3. No matches -> create new primary contact
        4. Exact email+phone match -> return its chain unchanged
        5. Otherwise find the chain primaries, merge them under the oldest,
           and add a secondary if the observation carries new information
        6. Return consolidated contact information
        """
        email, phone = validate_observation(email, phone)
        keys = fingerprint_keys(email, phone)

        attempt = 0
        while True:
            try:
                async with AsyncExitStack() as held:
                    await held.enter_async_context(self.locks.hold(keys, self.lock_timeout))
                    async with self.backend.begin() as store:
                        await store.lock(keys)
                        return await self._reconcile(store, held, email, phone)
            except ConflictError as e:
                if attempt >= self.conflict_retries:
                    logger.error(f"Giving up on email={email}, phone={phone} after {attempt + 1} attempts: {e}")
                    raise
                attempt += 1
                logger.warning(f"Conflict while reconciling, retrying ({attempt}/{self.conflict_retries}): {e}")

    async def list_contacts(self) -> List[ContactRecord]:
        """Every stored contact, oldest first"""
        async with self.backend.begin() as store:
            contacts = await store.list_contacts()
        return [ContactRecord.model_validate(contact) for contact in contacts]

    async def _reconcile(
        self,
        store: ContactStore,
        held: AsyncExitStack,
        email: Optional[str],
        phone: Optional[str]
    ) -> ContactResponse:
        matches = await store.find_by_fields(email, phone)

        if not matches:
            contact = await store.create(email, phone, PRIMARY)
            logger.info(f"Created primary contact {contact.id}")
            return self._build_consolidated_response(contact, [contact])

        exact_match = self._find_exact_match(matches, email, phone)
        if exact_match:
            primary = await self._load_primary(store, exact_match)
            logger.info(f"Exact match on contact {exact_match.id}, chain {primary.id} unchanged")
            return self._build_consolidated_response(primary, await store.find_chain(primary.id))

        primaries = await self._find_chain_primaries(store, matches)
        primaries = await self._lock_chains(store, held, primaries)

        if len(primaries) > 1:
            primary = await self._link_primary_contacts(store, primaries)
        else:
            primary = primaries[0]

        chain = await store.find_chain(primary.id)
        if self._has_new_information(chain, email, phone):
            secondary = await store.create(email, phone, SECONDARY, linked_id=primary.id)
            logger.info(f"Created secondary contact {secondary.id} under primary {primary.id}")
            chain = await store.find_chain(primary.id)

        return self._build_consolidated_response(primary, chain)

    def _find_exact_match(
        self,
        contacts: List[Contact],
        email: Optional[str],
        phone: Optional[str]
    ) -> Optional[Contact]:
        """
        Contact holding exactly this email+phone combination
        Only meaningful when both values were given
        """
        if email is None or phone is None:
            return None
        for contact in contacts:
            if contact.email == email and contact.phone_number == phone:
                return contact
        return None

    async def _load_primary(self, store: ContactStore, contact: Contact) -> Contact:
        """Primary of the chain a contact belongs to"""
        if contact.is_primary():
            return contact
        primary = await store.find_by_id(contact.linked_id)
        if primary is None or not primary.is_primary():
            raise NotFoundError(
                f"Contact {contact.id} links to missing primary {contact.linked_id}",
                contact_id=contact.linked_id
            )
        return primary

    async def _find_chain_primaries(self, store: ContactStore, matches: List[Contact]) -> List[Contact]:
        """
        Distinct chain primaries behind the matched contacts
        Secondaries contribute the primary they link to
        """
        primaries = {}
        for contact in matches:
            primary_id = contact.primary_id()
            if primary_id in primaries:
                continue
            primaries[primary_id] = await self._load_primary(store, contact)
        return list(primaries.values())

    async def _lock_chains(
        self,
        store: ContactStore,
        held: AsyncExitStack,
        primaries: List[Contact]
    ) -> List[Contact]:
        """
        Lock the chains about to change and re-read their primaries
        Raises ConflictError if one was demoted by a concurrent request
        """
        keys = chain_keys(p.id for p in primaries)
        await held.enter_async_context(self.locks.hold(keys, self.lock_timeout))
        await store.lock(keys)

        current = []
        for primary in primaries:
            contact = await store.find_by_id(primary.id)
            if contact is None or not contact.is_primary():
                raise ConflictError(f"Contact {primary.id} changed while reconciling")
            current.append(contact)
        return current

    async def _link_primary_contacts(self, store: ContactStore, primaries: List[Contact]) -> Contact:
        """
        Merge chains by demoting every primary except the oldest
        Secondaries of a demoted primary are moved under the survivor so
        chains stay two levels deep.
        """
        oldest_primary = min(primaries, key=lambda c: c.age_key())

        for primary in primaries:
            if primary.id == oldest_primary.id:
                continue
            await store.demote(primary.id, oldest_primary.id)
            moved = await store.relink(primary.id, oldest_primary.id)
            logger.info(
                f"Merged primary {primary.id} into {oldest_primary.id} "
                f"({moved} secondaries relinked)"
            )

        return oldest_primary

    def _has_new_information(
        self,
        chain: List[Contact],
        email: Optional[str],
        phone: Optional[str]
    ) -> bool:
        """
        Check if the request contains an email or phone number that no
        member of the chain has
        """
        all_emails = {c.email for c in chain if c.email}
        all_phones = {c.phone_number for c in chain if c.phone_number}

        has_new_email = email is not None and email not in all_emails
        has_new_phone = phone is not None and phone not in all_phones

        return has_new_email or has_new_phone

    def _build_consolidated_response(self, primary_contact: Contact, chain: List[Contact]) -> ContactResponse:
        """
        Build the consolidated view of a chain
        Primary values first, then other members' values in chain order
        """
        emails = []
        phone_numbers = []
        secondary_ids = []

        if primary_contact.email:
            emails.append(primary_contact.email)
        if primary_contact.phone_number:
            phone_numbers.append(primary_contact.phone_number)

        for contact in chain:
            if contact.id == primary_contact.id:
                continue
            if contact.is_secondary():
                secondary_ids.append(contact.id)
            if contact.email and contact.email not in emails:
                emails.append(contact.email)
            if contact.phone_number and contact.phone_number not in phone_numbers:
                phone_numbers.append(contact.phone_number)

        return ContactResponse(
            primaryContactId=primary_contact.id,
            emails=emails,
            phoneNumbers=phone_numbers,
            secondaryContactIds=secondary_ids
        )


# Global service instance
identity_service = IdentityService()
