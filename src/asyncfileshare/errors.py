class StorageError(Exception):
    """Base class for all errors raised by asyncfileshare."""

    pass


class InvalidConnectionStringError(StorageError, ValueError):
    """Raised when a connection string cannot be parsed."""

    pass


class InvalidConfigurationError(StorageError, ValueError):
    """Raised when a parameter is rejected locally or by the backend."""

    pass


class NotFoundError(StorageError):
    """Raised when a share, directory, file, container or blob does not exist."""

    pass


class AuthorizationFailedError(StorageError):
    """Raised for a bad account key or an expired, revoked or insufficient SAS."""

    pass


class QuotaExceededError(StorageError):
    """Raised when a write would take a share past its quota."""

    pass


class CopyStateError(StorageError):
    """Raised when a copy operation is not in a state that allows the request."""

    pass


class TransportError(StorageError):
    """Raised for network failures and backend errors with no closer mapping."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
