# Overview: Service-layer operations for accounts; creation, profile edits, verification and roles.

"""
Account Service

Account lifecycle:
- Cashiers and above create accounts. The new account has no password and
  gets a one-time onboarding token (reset_token, 7-day expiry); completing
  the reset flow sets the password and verifies the account.
- Public signup creates an unverified account with a password.
- verified only ever moves false -> true.
- Role changes go through the authorization gate (CHANGE_ROLE); a
  suspicious account cannot become a cashier until the flag is cleared.
- Flagging an account suspicious never changes its points.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_

from ..errors import DuplicateAccount, NotFound, ValidationError
from ..extensions import db
from ..models import Account
from ..permissions import Action, Role, Target, require_actor
from ..time_utils import utcnow
from ..validation import (
    is_valid_name,
    is_valid_uoft_email,
    parse_birthday,
    parse_bool_arg,
    parse_pagination,
    require_bool,
    require_utorid,
)
from . import auth_service
from .concurrency import run_atomic


def _require_name(value) -> str:
    if not is_valid_name(value):
        raise ValidationError("name must be 1-50 characters")
    return value


def _require_email(value) -> str:
    if not is_valid_uoft_email(value):
        raise ValidationError("email must be a valid University of Toronto email")
    return value


def _ensure_unique(utorid: str | None = None, email: str | None = None, *, exclude_id: int | None = None) -> None:
    q = db.session.query(Account)
    clauses = []
    if utorid is not None:
        clauses.append(Account.utorid == utorid)
    if email is not None:
        clauses.append(Account.email == email)
    q = q.filter(or_(*clauses))
    if exclude_id is not None:
        q = q.filter(Account.id != exclude_id)
    existing = q.first()
    if existing is None:
        return
    if utorid is not None and existing.utorid == utorid:
        raise DuplicateAccount("A user with that utorid already exists")
    raise DuplicateAccount("A user with that email already exists")


def get_account_or_404(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if account is None:
        raise NotFound("User not found")
    return account


def create_account(actor: Account, utorid, name, email, *, now: datetime | None = None) -> tuple[Account, str, datetime]:
    """
    Register an account on someone's behalf.

    Returns (account, onboarding_token, expires_at). The token is the only
    way in until the owner sets a password.
    """
    require_actor(actor, Action.CREATE_ACCOUNT)
    utorid = require_utorid(utorid)
    name = _require_name(name)
    email = _require_email(email)
    _ensure_unique(utorid, email)
    now = now or utcnow()
    ttl = timedelta(days=current_app.config.get("ONBOARDING_TOKEN_TTL_DAYS", 7))

    def _op():
        account = Account(
            utorid=utorid,
            name=name,
            email=email,
            role=Role.REGULAR.label,
            points=0,
            verified=False,
            suspicious=False,
            created_at=now,
            updated_at=now,
        )
        db.session.add(account)
        token, expires_at = auth_service.issue_reset_token(account, ttl, now=now)
        db.session.flush()
        return account, token, expires_at

    return run_atomic(_op)


def signup(utorid, name, email, password, *, now: datetime | None = None) -> Account:
    """Self registration. The account starts unverified."""
    utorid = require_utorid(utorid)
    name = _require_name(name)
    email = _require_email(email)
    _ensure_unique(utorid, email)
    password_hash = auth_service.hash_password(password)
    now = now or utcnow()

    def _op():
        account = Account(
            utorid=utorid,
            name=name,
            email=email,
            role=Role.REGULAR.label,
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
        )
        db.session.add(account)
        db.session.flush()
        return account

    return run_atomic(_op)


def create_superuser(utorid, email, password) -> Account:
    """Operator bootstrap; used by `flask users createsu`."""
    utorid = require_utorid(utorid)
    email = _require_email(email)
    _ensure_unique(utorid, email)
    password_hash = auth_service.hash_password(password)

    def _op():
        account = Account(
            utorid=utorid,
            name=utorid,
            email=email,
            role=Role.SUPERUSER.label,
            password_hash=password_hash,
            verified=True,
        )
        db.session.add(account)
        db.session.flush()
        return account

    return run_atomic(_op)


def get_account(actor: Account, account_id: int) -> Account:
    require_actor(actor, Action.VIEW_ACCOUNT)
    return get_account_or_404(account_id)


def list_accounts(actor: Account, args) -> tuple[int, list[Account]]:
    """Filters: name (utorid or name), role, verified, activated, page, limit."""
    require_actor(actor, Action.LIST_ACCOUNTS)
    page, limit = parse_pagination(args)

    q = db.session.query(Account)
    name = args.get("name")
    if name:
        q = q.filter(or_(Account.utorid.ilike(f"%{name}%"), Account.name.ilike(f"%{name}%")))
    role = args.get("role")
    if role:
        q = q.filter(Account.role == Role.parse(role).label)
    verified = parse_bool_arg(args.get("verified"), "verified")
    if verified is not None:
        q = q.filter(Account.verified.is_(verified))
    activated = parse_bool_arg(args.get("activated"), "activated")
    if activated is not None:
        q = q.filter(Account.password_hash != "") if activated else q.filter(Account.password_hash == "")

    count = q.count()
    rows = q.order_by(Account.id).offset((page - 1) * limit).limit(limit).all()
    return count, rows


def update_profile(actor: Account, data: dict) -> Account:
    """Self-service edits: name, email, birthday, avatarUrl."""
    require_actor(actor, Action.UPDATE_OWN_PROFILE, Target(owner_id=actor.id))

    updates = {}
    if data.get("name") is not None:
        updates["name"] = _require_name(data["name"])
    if data.get("email") is not None:
        updates["email"] = _require_email(data["email"])
        _ensure_unique(email=updates["email"], exclude_id=actor.id)
    if data.get("birthday") is not None:
        updates["birthday"] = parse_birthday(data["birthday"])
    if data.get("avatarUrl") is not None:
        if not isinstance(data["avatarUrl"], str):
            raise ValidationError("avatarUrl must be a string")
        updates["avatar_url"] = data["avatarUrl"]
    if not updates:
        raise ValidationError("No fields to update")

    def _op():
        for key, value in updates.items():
            setattr(actor, key, value)
        return actor

    return run_atomic(_op)


def update_account(actor: Account, account_id: int, data: dict) -> tuple[Account, list[str]]:
    """
    Manager edits of another account: email, verified, suspicious, role.

    Returns (account, changed_field_names).
    """
    require_actor(actor, Action.UPDATE_ACCOUNT)
    account = get_account_or_404(account_id)

    updates = {}
    if data.get("email") is not None:
        updates["email"] = _require_email(data["email"])
        _ensure_unique(email=updates["email"], exclude_id=account.id)
    if data.get("verified") is not None:
        if data["verified"] is not True:
            raise ValidationError("verified can only be set to true")
        require_actor(actor, Action.VERIFY_ACCOUNT)
        updates["verified"] = True
    if data.get("suspicious") is not None:
        require_actor(actor, Action.FLAG_ACCOUNT)
        updates["suspicious"] = require_bool(data["suspicious"], "suspicious")
    if data.get("role") is not None:
        new_role = Role.parse(data["role"])
        require_actor(
            actor,
            Action.CHANGE_ROLE,
            Target(owner_id=account.id, current_role=account.role_enum, new_role=new_role),
        )
        suspicious = updates.get("suspicious", account.suspicious)
        if new_role == Role.CASHIER and suspicious:
            raise ValidationError("A suspicious user cannot be made a cashier")
        updates["role"] = new_role.label
    if not updates:
        raise ValidationError("No fields to update")

    def _op():
        for key, value in updates.items():
            setattr(account, key, value)
        return account

    account = run_atomic(_op)
    return account, list(updates)


def verify_account(actor: Account, account_id: int) -> Account:
    require_actor(actor, Action.VERIFY_ACCOUNT)
    account = get_account_or_404(account_id)

    def _op():
        account.verified = True
        return account

    return run_atomic(_op)
