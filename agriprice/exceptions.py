"""Exception hierarchy for agriprice.

Exception Hierarchy:
    AgriPriceError (base)
    ├── ConfigurationError
    ├── ValidationError
    └── DataProviderError
        ├── ProviderTimeoutError
        ├── ProviderRateLimitError
        └── DataNotAvailableError
            └── MalformedPayloadError

Provider errors never escape a resolution: the resolver logs them and moves on
to the next tier or candidate date.
"""
from __future__ import annotations

from typing import Optional, Dict, Any


class AgriPriceError(Exception):
    """Base exception for all agriprice errors.

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(AgriPriceError):
    """Raised when a backing collaborator has no usable configuration.

    Examples:
        - Missing data.gov.in API key
        - Missing Supabase URL or key
    """
    pass


class ValidationError(AgriPriceError, ValueError):
    """Raised when query input is malformed.

    Subclasses ValueError so pydantic validators surface it as a field error.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.field = field
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, code, details)


class DataProviderError(AgriPriceError):
    """Base class for external price provider errors.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        details = details or {}
        if provider:
            details["provider"] = provider
        super().__init__(message, code, details)


class ProviderTimeoutError(DataProviderError):
    """Raised when a provider request times out."""
    pass


class ProviderRateLimitError(DataProviderError):
    """Raised when the provider answers 429.

    Attributes:
        retry_after: Seconds the provider asked us to wait
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retry_after: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        details = details or {}
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(message, provider, code, details)


class DataNotAvailableError(DataProviderError):
    """Raised when the provider could not deliver data.

    Covers HTTP errors, connection failures and unreadable responses.
    """
    pass


class MalformedPayloadError(DataNotAvailableError):
    """Raised when the provider envelope does not have the expected shape."""
    pass


def is_transient_error(error: Exception) -> bool:
    """Check whether an error is a transient provider fault.

    Transient faults are logged and treated as an empty tier; anything else
    reaching the resolver is a programming error.
    """
    return isinstance(error, DataProviderError)
