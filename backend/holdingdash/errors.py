"""Domain exceptions shared by the services.

The application exception handler turns these into ``{"detail": ...}``
responses; services never raise HTTP errors themselves.  A denied
permission check is *not* an error: ``PermissionSnapshot.can()`` and
friends simply return ``False``.
"""
from __future__ import annotations


class HoldingDashError(Exception):
    """Base class for application errors."""

    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(HoldingDashError):
    """Input rejected before any persistence call."""

    status_code = 422


class ConflictError(HoldingDashError):
    """A write or load lost a race against a newer one."""

    status_code = 409


class PersistenceError(HoldingDashError):
    """The database rejected a write; the transaction was rolled back."""

    status_code = 500


class NotFoundError(HoldingDashError):
    status_code = 404


class UpstreamError(HoldingDashError):
    """A third-party service failed or answered with something unusable."""

    status_code = 502
