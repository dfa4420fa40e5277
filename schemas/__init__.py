"""
Pydantic schemas for Identity Reconciliation API
Contains request/response models and the input validators
shared with the identity service.
"""

from .identify import (
    IdentifyRequest,
    ContactResponse,
    IdentifyResponse,
    ContactRecord,
    ContactListResponse,
    ErrorResponse
)

__all__ = [
    "IdentifyRequest",
    "ContactResponse",
    "IdentifyResponse",
    "ContactRecord",
    "ContactListResponse",
    "ErrorResponse"
]
