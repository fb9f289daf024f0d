"""
edgeml exception hierarchy.

All edgeml exceptions inherit from EdgeMLException for easy catching.
"""
from typing import Optional


class EdgeMLException(Exception):
    """Base exception for all edgeml errors."""

    def __init__(self, message: str, context: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self):
        base = f"{self.__class__.__name__}: {self.message}"
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base} (context: {ctx_str})"
        return base


# Validation exceptions
class InvalidParameterError(EdgeMLException):
    """A required argument or field is missing or malformed."""
    pass


class ServiceNotFoundError(EdgeMLException):
    """The requested key is not registered."""
    pass


class PermissionDeniedError(EdgeMLException):
    """The writable root exists but cannot be written."""
    pass


class UnsupportedError(EdgeMLException):
    """Unknown service type, role or connection kind."""
    pass


class ConfigurationError(EdgeMLException):
    """Invalid configuration."""
    pass


# Runtime exceptions
class OutOfResourcesError(EdgeMLException):
    """Allocation of a buffer or handle failed."""
    pass


class TransferIOError(EdgeMLException):
    """File or network I/O failed while moving a blob."""
    pass


class CompletionTimeoutError(EdgeMLException):
    """Required training data did not arrive in time."""
    pass


class InternalError(EdgeMLException):
    """Handle state is corrupted or used after destroy."""
    pass


# Transport layer exceptions
class TransportException(EdgeMLException):
    """Base for transport errors."""
    pass


class NetworkError(TransportException):
    """Network communication failed."""
    pass
