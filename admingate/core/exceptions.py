# admingate/core/exceptions.py
"""
Core exceptions for the admin gate.

Security failures (missing credentials, invalid session, invalid CSRF
token) are raised and caught inside the gate only; callers outside the
gate see a single denied outcome. Infrastructure failures carry service
context for server-side logs.
"""

from typing import Optional, Dict, Any


class GateBaseException(Exception):
    """Base exception for all gate errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class GateSecurityError(GateBaseException):
    """Errors in session or CSRF validation"""

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.user_id = user_id

        if user_id:
            self.details['user_id'] = user_id


class MissingCredentialsError(GateSecurityError):
    """One or more client-held identifiers are absent"""

    def __init__(self, message: str, missing_keys: Optional[list] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.missing_keys = missing_keys or []

        if missing_keys:
            self.details['missing_keys'] = list(missing_keys)


class InvalidSessionError(GateSecurityError):
    """Unknown, expired or fingerprint-mismatched session"""


class InvalidCsrfError(GateSecurityError):
    """Unknown user, no live token, or token mismatch"""


class GateServiceError(GateBaseException):
    """Errors in backing service interactions"""

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize service error.

        Args:
            message: Error description
            service_name: Name of the failing service
            operation: Operation that failed
            details: Additional service context
        """
        super().__init__(message, details)
        self.service_name = service_name
        self.operation = operation

        if service_name:
            self.details['service'] = service_name
        if operation:
            self.details['operation'] = operation


class TransientLookupError(GateServiceError):
    """A registry or authority backend could not be reached"""


class RedisServiceError(GateServiceError):
    """Specific errors for Redis service interactions"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize Redis service error.

        Args:
            message: Error description
            key: Redis key that failed
            operation: Redis operation that failed
            details: Additional Redis context
        """
        super().__init__(message, service_name="Redis", operation=operation, details=details)
        self.key = key

        if key:
            self.details['key'] = key


class GateConfigurationError(GateBaseException):
    """Errors in system configuration and initialization"""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


# Convenience functions for creating common errors

def redis_error(message: str, key: str = None, operation: str = None) -> RedisServiceError:
    """Create a Redis service error with key context."""
    return RedisServiceError(message, key=key, operation=operation)


def transient_error(message: str, service: str, operation: str = None) -> TransientLookupError:
    """Create a transient lookup error with service context."""
    return TransientLookupError(message, service_name=service, operation=operation)


def config_error(message: str, component: str) -> GateConfigurationError:
    """Create a configuration error with component context."""
    return GateConfigurationError(message, component=component)


class GateDeniedError(GateBaseException):
    """Raised by the HTTP dependency when the gate denies a navigation"""

    def __init__(self, decision: Any, storage: Any):
        super().__init__("Navigation denied")
        self.decision = decision
        self.storage = storage


# Shorter names
ServiceError = GateServiceError
ConfigurationError = GateConfigurationError
