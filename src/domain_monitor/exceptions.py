"""
Exception classes for the domain monitor.

All exceptions inherit from DomainMonitorError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class DomainMonitorError(Exception):
    """Base exception for all domain monitor errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DomainMonitorError):
    """Raised when a domain name or other caller input is malformed."""

    pass


class NotFoundError(DomainMonitorError):
    """Raised when a domain id is unknown to the registry."""

    pass


class InvalidScheduleError(DomainMonitorError):
    """Raised when a cron expression is rejected at configuration time."""

    pass


class SweepTimeoutError(DomainMonitorError):
    """Describes a sweep that did not finish before its ceiling."""

    pass


class WhoisLookupError(DomainMonitorError):
    """Raised when a WHOIS lookup fails (transport or parse error)."""

    pass


class DeliveryError(DomainMonitorError):
    """Raised when a webhook or channel delivery fails."""

    pass


class RefreshInProgressError(DomainMonitorError):
    """Raised when a refresh sweep is requested while one is running."""

    pass


class PersistenceError(DomainMonitorError):
    """Raised when persistence operations fail (file I/O, HMAC validation)."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass
