"""Custom exception hierarchy."""


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class InputError(AppError):
    """Raised when caller input is rejected before any mutation."""
    pass


class FileTooLargeError(InputError):
    """Raised when a source file exceeds the configured size bound."""
    pass


class UnsafeXmlError(InputError):
    """Raised when XML declares entities or references external resources."""
    pass


class MalformedXmlError(InputError):
    """Raised when XML cannot be parsed."""
    pass


class ItemTransformError(AppError):
    """Raised when a raw catalog item lacks a parseable required field."""
    pass


class BatchError(AppError):
    """Raised when a batch transaction fails and is rolled back."""

    def __init__(self, message: str, batch_index: int, item_count: int, original_error: Exception = None):
        super().__init__(message, original_error)
        self.batch_index = batch_index
        self.item_count = item_count


class ExternalServiceError(AppError):
    """Raised when an external provider call fails."""
    pass


class APIClientError(ExternalServiceError):
    """Raised when an external API call fails."""

    def __init__(self, message: str, status_code: int | None = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.status_code = status_code


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class PersistenceError(AppError):
    """Raised when the store is unreachable or a write fails."""
    pass


class QueueUnavailableError(PersistenceError):
    """Raised when a job cannot be enqueued because the queue store is unreachable."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class UnsupportedSearchTypeError(AppError):
    """Raised when a search is requested with an unknown search type."""
    pass
