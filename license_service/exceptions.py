"""
exceptions.py - Error Classification for License Order Processing

Business rule violations and external dependency failures are kept apart so the
API layer can map each to its own response code:

    • DomainError       - the order breaks a business rule (HTTP 400)
    • ExternalApiError  - the license provider failed or answered garbage (HTTP 502)
    • ConfigurationError - the service settings are invalid (startup failure)

Cancellation is not modelled here; it propagates as asyncio.CancelledError.
"""


class LicenseServiceError(Exception):
    """Base exception for all license service errors."""

    def __init__(self, message: str, code: str = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__


class DomainError(LicenseServiceError):
    """Raised when an order violates a business rule. Never retried."""

    def __init__(self, message: str):
        super().__init__(message, code="DOMAIN_ERROR")


class ExternalApiError(LicenseServiceError):
    """
    Raised when a call to the license provider fails.

    The underlying cause is chained via `raise ... from`.
    """

    def __init__(self, message: str, status_code: int = None, body: str = None):
        super().__init__(message, code="EXTERNAL_API_ERROR")
        self.status_code = status_code
        self.body = body


class ConfigurationError(LicenseServiceError):
    """Raised at startup when the provider settings are incomplete or invalid."""

    def __init__(self, failures: list):
        super().__init__("Invalid license provider configuration: " + "; ".join(failures),
                         code="CONFIGURATION_ERROR")
        self.failures = list(failures)
