# Overview: Service-layer operations for auth; passwords, login and reset tokens.

"""
Authentication Service

WHY: Every ledger action must be attributable to a logged-in account.
Uses bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- 8 to 20 characters with uppercase, lowercase, digit and special char
- Session tokens managed separately (see session_service.py)
- Reset tokens are one-time: consumed on use, expire after a fixed TTL
- Reset requests are rate limited per client IP (reset_requests table)
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta

import bcrypt
from flask import current_app

from ..errors import (
    AuthenticationError,
    NotFound,
    RateLimited,
    ResetTokenExpired,
    ValidationError,
)
from ..extensions import db
from ..models import Account, ResetRequest
from ..time_utils import utcnow
from .concurrency import run_atomic


class PasswordValidationError(ValidationError):
    """Password does not meet strength requirements."""


def validate_password_strength(password) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - 8 to 20 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str):
        raise PasswordValidationError("Password is required")

    if len(password) < 8 or len(password) > 20:
        raise PasswordValidationError("Password must be 8-20 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r'[^A-Za-z0-9]', password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Accounts that never set a password (empty hash) never match.
    """
    if not password_hash or not isinstance(password, str):
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(utorid, password, *, now: datetime | None = None) -> Account:
    """
    Authenticate by utorid and password.

    Raises AuthenticationError with the same message for an unknown utorid
    and a wrong password.
    """
    if not isinstance(utorid, str) or not isinstance(password, str):
        raise ValidationError("utorid and password required")

    account = db.session.query(Account).filter_by(utorid=utorid).first()
    if not account or not verify_password(password, account.password_hash):
        current_app.logger.warning("Failed login for utorid %s", utorid)
        raise AuthenticationError("Invalid utorid or password")

    def _op():
        account.last_login = now or utcnow()
        return account

    return run_atomic(_op)


def issue_reset_token(account: Account, ttl: timedelta, *, now: datetime | None = None) -> tuple[str, datetime]:
    """
    Attach a fresh one-time token to the account (caller commits).

    Used both for onboarding (account creation) and for password resets.
    """
    now = now or utcnow()
    token = str(uuid.uuid4())
    expires_at = now + ttl
    account.reset_token = token
    account.reset_expires_at = expires_at
    return token, expires_at


def request_password_reset(utorid, ip_address: str | None, *, now: datetime | None = None) -> tuple[str, datetime]:
    """
    Issue a password-reset token for utorid.

    Raises RateLimited if the same client IP asked within
    RESET_RATE_LIMIT_SECONDS, NotFound for an unknown utorid.
    """
    now = now or utcnow()
    if not isinstance(utorid, str) or not utorid:
        raise ValidationError("utorid is required")

    window = current_app.config.get("RESET_RATE_LIMIT_SECONDS", 60)
    if window and ip_address:
        recent = db.session.query(ResetRequest).filter(
            ResetRequest.ip_address == ip_address,
            ResetRequest.requested_at > now - timedelta(seconds=window),
        ).first()
        if recent:
            retry_after = window - int((now - recent.requested_at).total_seconds())
            raise RateLimited(retry_after_seconds=max(retry_after, 1))

    account = db.session.query(Account).filter_by(utorid=utorid).first()
    if not account:
        raise NotFound("User not found")

    ttl = timedelta(hours=current_app.config.get("RESET_TOKEN_TTL_HOURS", 1))

    def _op():
        db.session.add(ResetRequest(ip_address=ip_address, account_id=account.id, requested_at=now))
        return issue_reset_token(account, ttl, now=now)

    return run_atomic(_op)


def complete_password_reset(reset_token: str, utorid, password, *, now: datetime | None = None) -> Account:
    """
    Consume a reset token and set a new password.

    The token must belong to utorid. Completing the flow proves control of
    the UofT mailbox, so the account becomes verified.
    """
    now = now or utcnow()
    if not isinstance(utorid, str) or not utorid:
        raise ValidationError("utorid is required")

    account = db.session.query(Account).filter_by(reset_token=reset_token).first()
    if not account:
        raise NotFound("Reset token not found")
    if account.utorid != utorid:
        raise AuthenticationError("Reset token does not belong to this utorid")
    if account.reset_expires_at is None or account.reset_expires_at < now:
        raise ResetTokenExpired()

    password_hash = hash_password(password)

    def _op():
        account.password_hash = password_hash
        account.reset_token = None
        account.reset_expires_at = None
        account.verified = True
        return account

    return run_atomic(_op)


def change_password(account: Account, old_password, new_password) -> Account:
    if not verify_password(old_password, account.password_hash):
        raise AuthenticationError("Current password is incorrect")
    password_hash = hash_password(new_password)

    def _op():
        account.password_hash = password_hash
        return account

    return run_atomic(_op)
