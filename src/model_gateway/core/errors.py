"""
Gateway error types.

Every failure inside the gateway is classified into one of these kinds
before it leaves the layer that observed it.
"""

from typing import Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.message = message
        self.provider = provider
        super().__init__(message)


class ConfigurationError(GatewayError):
    """Raised when a provider is missing a required credential."""
    pass


class UnknownProviderError(GatewayError):
    """Raised when a provider name is not one the gateway knows."""
    pass


class NotRunningError(GatewayError):
    """Raised when a provider cannot be reached (connection refused, timeout)."""
    pass


class ProviderAPIError(GatewayError):
    """Raised when a provider answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider)
        self.status_code = status_code


class MalformedRequestError(GatewayError):
    """Raised when an inbound request body cannot be parsed."""
    pass


class PayloadTooLargeError(GatewayError):
    """Raised when an inbound request body exceeds the size ceiling."""

    def __init__(self, message: str, limit: Optional[int] = None):
        super().__init__(message)
        self.limit = limit


class AlreadyRunningError(GatewayError):
    """Raised when the gateway server is started twice."""
    pass


class NotRegisteredError(GatewayError):
    """Raised when no handler is registered for a provider."""
    pass
