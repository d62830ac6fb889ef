"""Error kinds raised by the template and chat managers.

The HTTP layer maps each kind to a status code in ``app.main``.
"""


class ServiceError(Exception):
    """Base class for all manager-level failures."""

    def __init__(self, message: str, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(ServiceError):
    """Malformed or missing input, rejected before any storage access."""


class NotFoundError(ServiceError):
    """Referenced entity, version or static file is absent."""


class ConflictError(ServiceError):
    """A concurrent writer violated a uniqueness constraint; retry the operation."""


class StorageError(ServiceError):
    """Any other backend failure."""
