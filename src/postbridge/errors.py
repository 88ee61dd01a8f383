"""Exception hierarchy shared by the queue, stores and publishers.

Delivery errors carry an optional HTTP status code so the retry strategy
can tell a transient outage apart from a condition retries cannot fix.
"""

from __future__ import annotations


class PostbridgeError(Exception):
    """Base exception for Postbridge."""

    pass


class DeliveryError(PostbridgeError):
    """A delivery attempt failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(DeliveryError):
    """Credentials were rejected (401)."""

    pass


class AuthorizationError(DeliveryError):
    """Credentials lack permission (403)."""

    pass


class ValidationError(DeliveryError):
    """The job or payload is invalid (missing entities, 422)."""

    pass


class NotFoundError(DeliveryError):
    """The remote endpoint or resource does not exist (404)."""

    pass


class TransientError(DeliveryError):
    """Network failure, timeout or 5xx; worth retrying."""

    pass


class QueueError(PostbridgeError):
    """An operation was requested on a job in the wrong state."""

    pass


class JobNotFoundError(QueueError):
    """No job exists with the requested id."""

    pass


def error_for_status(status_code: int, message: str) -> DeliveryError:
    """Map an HTTP status code onto the delivery error hierarchy."""
    if status_code == 401:
        return AuthenticationError(message, status_code=status_code)
    if status_code == 403:
        return AuthorizationError(message, status_code=status_code)
    if status_code == 404:
        return NotFoundError(message, status_code=status_code)
    if status_code == 422:
        return ValidationError(message, status_code=status_code)
    if status_code >= 500 or status_code == 429:
        return TransientError(message, status_code=status_code)
    return DeliveryError(message, status_code=status_code)
