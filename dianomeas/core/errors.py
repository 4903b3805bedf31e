"""
Error kinds raised by provisioning and reconciliation.
"""

from typing import Optional


class DianomeasError(Exception):
    """Base class for all errors raised by this package."""


class TransportError(DianomeasError):
    """Raised when a provider API call fails (network, auth, or provider side).

    Never retried by the core; terminal for the current operation.
    """
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(DianomeasError):
    """Raised when no capacity satisfies the constraints or a required device is missing."""


class PollTimeoutError(DianomeasError, TimeoutError):
    """Raised when a device does not reach the target state before the poll deadline."""
    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts
