from typing import Optional


class CRMError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500


class NotFoundError(CRMError):
    status_code = 404


class ValidationError(CRMError):
    status_code = 400


class ConflictError(CRMError):
    status_code = 409


class ConfigurationError(CRMError):
    """Tenant setup is incomplete (no default funnel, funnel without steps)."""
    status_code = 400


class DispatchError(Exception):
    """The messaging provider rejected or never answered a send."""

    def __init__(self, message: str, status_code: Optional[int] = None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
