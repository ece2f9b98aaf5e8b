# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
quotasync Exception Hierarchy

Exception Hierarchy:
    QuotaSyncError (base)
    ├── ConfigError
    │   └── ConfigValidationError
    ├── CredentialsError
    ├── SubstrateError
    │   ├── SubstrateConnectionError
    │   ├── SubstrateNotFoundError
    │   ├── SubstrateConflictError
    │   └── SubstrateAlreadyExistsError
    └── NotificationError

Reconciliation code catches SubstrateError and logs it; nothing below the
manager lets a substrate failure terminate the process.
"""

from typing import Any, Dict, Optional

# ============================================================================
# Base Exceptions
# ============================================================================


class QuotaSyncError(Exception):
    """Base exception for all quotasync errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        result = {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

        if self.cause:
            result["cause"] = {
                "type": self.cause.__class__.__name__,
                "message": str(self.cause),
            }

        return result

    def __str__(self):
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.cause:
            base += f" | Caused by: {self.cause}"
        return base


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigError(QuotaSyncError):
    """Configuration-related errors"""


class ConfigValidationError(ConfigError):
    """Configuration validation failed"""


class CredentialsError(QuotaSyncError):
    """API server address or credentials could not be resolved"""


# ============================================================================
# Substrate Errors
# ============================================================================


class SubstrateError(QuotaSyncError):
    """A call against the orchestration substrate failed"""

    def __init__(
        self,
        message: str,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.namespace = namespace
        self.name = name
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "namespace": self.namespace,
                "name": self.name,
                "status_code": self.status_code,
            }
        )
        return result


class SubstrateConnectionError(SubstrateError):
    """Transport failure or unexpected response from the API server"""


class SubstrateNotFoundError(SubstrateError):
    """Target object does not exist"""


class SubstrateConflictError(SubstrateError):
    """Write rejected because the object changed since it was read"""


class SubstrateAlreadyExistsError(SubstrateError):
    """Create rejected because an object with that name exists"""


# ============================================================================
# Notification Errors
# ============================================================================


class NotificationError(QuotaSyncError):
    """Change feed payload could not be resolved to a notification"""

    def __init__(self, message: str, payload: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.payload = payload
