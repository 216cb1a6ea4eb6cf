# Overview: Error taxonomy shared by services and routes.

"""
Points ledger error taxonomy.

Services raise these; routes turn them into JSON responses with
`err.to_dict()` and `err.status_code`. `retryable` tells the caller whether
re-submitting the same request can succeed (only concurrency conflicts and
rate limits qualify).
"""

from __future__ import annotations


class PointsError(Exception):
    """Base class for request-scoped failures."""
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        self.details = details

    def to_dict(self) -> dict:
        body = {
            "error": self.message,
            "code": self.__class__.__name__,
            "retryable": self.retryable,
        }
        body.update(self.details)
        return body


class ValidationError(PointsError, ValueError):
    """Malformed or missing input."""
    status_code = 400


class AuthenticationError(PointsError):
    """Authentication required."""
    status_code = 401


class AuthorizationError(PointsError):
    """Forbidden: insufficient clearance."""
    status_code = 403


class NotFound(PointsError):
    """Resource not found."""
    status_code = 404


class InsufficientBalance(PointsError):
    """Insufficient points."""
    status_code = 400


class InsufficientEventBudget(PointsError):
    """Remaining event points is less than requested amount."""
    status_code = 400


class InvalidPromotion(PointsError):
    """Promotion cannot be applied to this purchase."""
    status_code = 400


class AlreadyProcessed(PointsError):
    """Redemption already processed."""
    status_code = 409


class AlreadyConsumed(PointsError):
    """Promotion has already been used by this user."""
    status_code = 409


class DuplicateAccount(PointsError):
    """User already exists."""
    status_code = 409


class CapacityExceeded(PointsError):
    """Event is full."""
    status_code = 410


class EventEnded(PointsError):
    """Event has ended."""
    status_code = 410


class ResetTokenExpired(PointsError):
    """Reset token expired."""
    status_code = 410


class RateLimited(PointsError):
    """Too Many Requests."""
    status_code = 429
    retryable = True


class Conflict(PointsError):
    """Concurrent update conflict; retry the request."""
    status_code = 409
    retryable = True
