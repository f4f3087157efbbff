"""Exceptions raised by the admission layer."""

from __future__ import annotations


class ThrottleError(Exception):
    """Base class for throttling errors."""


class UnsatisfiableRequestError(ThrottleError, ValueError):
    """Raised when a request costs more tokens than a bucket can ever hold."""

    def __init__(self, cost: float, capacity: float) -> None:
        super().__init__(f"Requested cost {cost} exceeds maximum tokens {capacity}")
        self.cost = cost
        self.capacity = capacity


class InvalidConfigurationError(ThrottleError, ValueError):
    """Raised when a policy or bucket is configured with unusable values."""


class PolicyRemovedError(ThrottleError):
    """Raised to waiters whose bucket was closed before they were admitted."""
