from __future__ import annotations

from ..extensions import db
from ..permissions import Role
from ..time_utils import to_utc_z, utcnow


class Account(db.Model):
    """
    A StellarPoints member.

    `points` is a maintained running total. It must always equal the sum of
    `amount` over this account's non-suspicious, fully-processed
    transactions (see ledger_service.replay_balance).

    `version_id` gives optimistic locking: two writers that read the same
    version cannot both commit a balance change.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("utorid", name="uq_accounts_utorid"),
        db.UniqueConstraint("email", name="uq_accounts_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    utorid = db.Column(db.String(8), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(50), nullable=True)
    birthday = db.Column(db.Date, nullable=True)
    avatar_url = db.Column(db.String(512), nullable=True)

    role = db.Column(db.String(16), nullable=False, default=Role.REGULAR.label, index=True)
    points = db.Column(db.Integer, nullable=False, default=0)

    verified = db.Column(db.Boolean, nullable=False, default=False)
    suspicious = db.Column(db.Boolean, nullable=False, default=False)

    # Empty string means the account has not set a password yet ("not activated")
    password_hash = db.Column(db.String(255), nullable=False, default="")
    reset_token = db.Column(db.String(64), nullable=True, unique=True)
    reset_expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_login = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def role_enum(self) -> Role:
        return Role.parse(self.role)

    @property
    def activated(self) -> bool:
        return bool(self.password_hash)

    def to_summary(self) -> dict:
        return {"id": self.id, "utorid": self.utorid, "name": self.name}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "utorid": self.utorid,
            "name": self.name,
            "email": self.email,
            "birthday": self.birthday.isoformat() if self.birthday else None,
            "role": self.role,
            "points": self.points,
            "verified": self.verified,
            "suspicious": self.suspicious,
            "avatarUrl": self.avatar_url,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
            "lastLogin": to_utc_z(self.last_login),
        }


class SessionToken(db.Model):
    """
    Bearer session for an authenticated account.

    SECURITY: Only the SHA-256 hash of the token is stored; the plaintext is
    returned to the client once at login.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime, nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    account = db.relationship("Account", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }


class ResetRequest(db.Model):
    """
    Password-reset request log, used to rate limit resets per client IP.
    """
    __tablename__ = "reset_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    ip_address = db.Column(db.String(45), nullable=True, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    requested_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
