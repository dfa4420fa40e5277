"""
Error taxonomy for identity reconciliation
Every failure the reconciler surfaces derives from ReconciliationError so the
HTTP layer can map it to a status code without inspecting messages.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for reconciliation failures"""

    error_type = "ReconciliationError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReconciliationError, ValueError):
    """
    Malformed or missing email / phone number

    Subclasses ValueError so pydantic validators can raise it directly.
    """

    error_type = "ValidationError"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(ReconciliationError):
    """A referenced contact (usually a chain primary) does not exist"""

    error_type = "NotFoundError"

    def __init__(self, message: str, contact_id: Optional[int] = None):
        super().__init__(message)
        self.contact_id = contact_id


class StoreError(ReconciliationError):
    """Persistence layer failure"""

    error_type = "StoreError"


class ConflictError(ReconciliationError):
    """Concurrent mutation detected while reconciling"""

    error_type = "ConflictError"
