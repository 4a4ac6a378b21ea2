# docpipeline/app/core/errors.py
"""Typed failures raised by storage, provider, extractor and validator.

Only the document worker turns these into persisted state; everything below it
raises and lets the worker decide. ``retryable`` is the single flag the worker
and the provider's own retry loop key off.
"""

from enum import Enum
from typing import Optional


class DocumentProcessingError(Exception):
    retryable = False


class TransientInfraError(DocumentProcessingError):
    """Storage outage, network failure, provider 5xx or rate limit."""
    retryable = True


class StorageError(TransientInfraError):
    pass


class ObjectNotFoundError(StorageError):
    def __init__(self, key: str):
        super().__init__(f"object not found: {key}")
        self.key = key


class RepositoryError(TransientInfraError):
    pass


class DocumentTooLargeError(DocumentProcessingError):
    def __init__(self, key: str, limit: int):
        super().__init__(f"document {key} exceeds the maximum size of {limit} bytes")
        self.key = key
        self.limit = limit


class UnsupportedMediaTypeError(DocumentProcessingError):
    def __init__(self, content_type: str):
        super().__init__(f"unsupported media type: {content_type or '<empty>'}")
        self.content_type = content_type


class LLMError(DocumentProcessingError):
    """Provider failure; ``retryable`` is decided per instance."""

    def __init__(
        self,
        provider: str,
        message: str,
        code: str = "",
        retryable: bool = False,
        cause: Optional[BaseException] = None,
    ):
        self.provider = provider
        self.code = code
        self.message = message
        self.retryable = retryable
        self.cause = cause
        super().__init__(str(self))
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.code:
            return f"{self.provider}: {self.code}: {self.message}"
        return f"{self.provider}: {self.message}"


class ValidationCause(str, Enum):
    FIELD_TOO_LONG = "field-too-long"
    INVALID_CHARACTER = "invalid-character"
    EMPTY_REQUIRED = "empty-required"


class ValidationError(DocumentProcessingError):
    """Extracted data violated a field rule. Re-asking the model will not help."""

    def __init__(self, field: str, cause: ValidationCause, message: str):
        self.field = field
        self.cause = cause
        self.message = message
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"validation error in {self.field}: {self.message}"


class RetryJobError(Exception):
    """Raised by the worker to ask the queue for a backoff redelivery."""

    def __init__(self, cause: DocumentProcessingError, attempt: int):
        super().__init__(f"retryable failure on attempt {attempt}: {cause}")
        self.cause = cause
        self.attempt = attempt
        self.__cause__ = cause


class JobCancelledError(Exception):
    """The attempt was cancelled (shutdown or deadline); nothing terminal was written."""
