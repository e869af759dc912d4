"""Domain exceptions shared by the services, the sync engine and the API.

Each class carries the HTTP status the API layer answers with, so routers
never translate errors by hand (see main.py exception handler).
"""


class LedgerSyncError(Exception):
    """Base for every error this package raises on purpose."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class NetworkError(LedgerSyncError):
    """The store is unreachable or answered with a non-2xx status."""

    status_code = 502
    error = "upstream_unavailable"

    def __init__(self, message: str = "", status: int | None = None):
        self.status = status
        super().__init__(message)


class AuthError(NetworkError):
    """The store rejected our credentials. Sync stays disabled until fixed."""

    error = "upstream_auth"


class ValidationError(LedgerSyncError):
    """Malformed input or an invalid state transition. Nothing was written."""

    status_code = 400
    error = "validation_error"


class ConflictError(LedgerSyncError):
    """A unique constraint fired (journal date, document number)."""

    status_code = 409
    error = "conflict"


class NotFoundError(LedgerSyncError):
    """A lookup that must succeed found nothing."""

    status_code = 404
    error = "not_found"

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")
