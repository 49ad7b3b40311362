"""
Error taxonomy shared by the storage gateways and the document service.

Backend-specific failures (SQLAlchemy, Azure SDK) are converted into these
types at the gateway boundary so the service layer and the routes only ever
deal with the classes below.
"""

from typing import Optional


class PortalError(Exception):
    """Base class for every domain error raised by the portal."""

    status_code = 500

    def __init__(self, message: str, *, key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.key = key


# ==================== CONNECTION POOL ====================

class PoolExhausted(PortalError):
    """No pooled connection became available before the timeout. Retryable."""

    status_code = 503
    retry_after = 1


class PoolClosed(PoolExhausted):
    """The pool is shutting down and refuses new acquisitions."""


# ==================== OBJECT STORE ====================

class StoreUnavailable(PortalError):
    """Listing the object store failed; readers degrade instead of failing."""


class WriteFailed(PortalError):
    pass


class DeleteFailed(PortalError):
    pass


class SignFailed(PortalError):
    pass


# ==================== RECORD STORE ====================

class NotFound(PortalError):
    status_code = 404


class RecordStoreError(PortalError):
    """The relational store rejected or could not run a statement."""
