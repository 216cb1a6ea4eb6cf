# Overview: Service-layer operations for session; bearer tokens and request context.

"""
Session Token Management Service

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_TTL_MINUTES)
- Idle timeout (SESSION_IDLE_MINUTES)
- Revocable on logout
- Tracks client IP and user agent
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Account, SessionToken
from ..permissions import Capability, Role, capabilities_for
from ..time_utils import utcnow


@dataclass
class SessionContext:
    """
    Everything a request handler knows about its caller.

    Built once per request by validate_session and passed around through
    flask.g. `capabilities` holds the role-implied capabilities; per-event
    organizer rights are added by the event service when needed.
    """
    account: Account
    session: SessionToken
    role: Role
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    @property
    def account_id(self) -> int:
        return self.account.id

    def refresh_profile(self) -> Account:
        """Reload the account row so role and flag changes show up."""
        db.session.refresh(self.account)
        self.role = self.account.role_enum
        self.capabilities = capabilities_for(self.role)
        return self.account


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    account_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
    *,
    now: datetime | None = None,
) -> tuple[SessionToken, str]:
    """
    Create new session token for account.

    Returns (session_record, plaintext_token).
    Client receives plaintext_token, database stores only the hash.
    """
    account = db.session.get(Account, account_id)
    if not account:
        raise ValueError("Account not found")

    plaintext_token = generate_token()
    now = now or utcnow()
    ttl = timedelta(minutes=current_app.config.get("SESSION_TTL_MINUTES", 60))

    session = SessionToken(
        account_id=account_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + ttl,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str, now: datetime) -> None:
    session.is_revoked = True
    session.revoked_at = now
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str, *, now: datetime | None = None) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if the token is unknown, revoked, past its absolute expiry
    or idle for too long. Idle sessions are revoked on sight.

    Updates last_used_at on successful validation (activity tracking).
    """
    now = now or utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    idle_limit = timedelta(minutes=current_app.config.get("SESSION_IDLE_MINUTES", 30))
    if now - session.last_used_at > idle_limit:
        _revoke(session, "Idle timeout", now)
        return None

    account = session.account
    if not account:
        _revoke(session, "Account removed", now)
        return None

    session.last_used_at = now
    db.session.commit()

    role = account.role_enum
    return SessionContext(
        account=account,
        session=session,
        role=role,
        capabilities=capabilities_for(role),
    )


def revoke_session(token: str, reason: str = "Logout") -> bool:
    """Revoke a session by plaintext token. Returns False if not found."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return False
    _revoke(session, reason, utcnow())
    return True


def revoke_all_sessions(account_id: int, reason: str) -> int:
    """Revoke every live session of an account (e.g. after a password change)."""
    now = utcnow()
    count = db.session.query(SessionToken).filter_by(
        account_id=account_id,
        is_revoked=False,
    ).update({
        SessionToken.is_revoked: True,
        SessionToken.revoked_at: now,
        SessionToken.revoked_reason: reason,
    })
    db.session.commit()
    return count
