"""
Business logic services for Identity Reconciliation API
Contains the identity reconciliation algorithm and the contact store
it runs against.
"""

from .contact_store import (
    ContactStore,
    StoreBackend,
    SQLAlchemyStoreBackend,
    InMemoryStoreBackend
)
from .identity_service import IdentityService, identity_service

__all__ = [
    "ContactStore",
    "StoreBackend",
    "SQLAlchemyStoreBackend",
    "InMemoryStoreBackend",
    "IdentityService",
    "identity_service"
]
