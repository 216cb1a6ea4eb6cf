# Overview: Service-layer operations for the points ledger; every balance change goes through here.

"""
Points Ledger Service

WHY: Account.points is a running total that must always equal the replayed
ledger. Every operation that changes a balance writes its transaction rows
and the balance change in one database transaction (run_atomic), so either
both are visible or neither is.

BALANCE RULES:
- A row counts toward the owner's balance unless it is suspicious or a
  redemption that has not been processed yet
- Toggling a row's suspicious flag recomputes the owner's balance from the
  ledger
- Pending, non-suspicious redemptions are holds: new redemptions and
  transfers must fit in points minus holds
- Adjustments skip the floor check and may take a balance negative

CONCURRENCY:
- Rows read for mutation are selected FOR UPDATE where supported
- Account, Transaction and Event carry version_id_col; a lost race raises
  StaleDataError, run_atomic re-runs the whole operation and finally
  reports Conflict
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import flag_modified

from ..errors import (
    AlreadyConsumed,
    AlreadyProcessed,
    AuthorizationError,
    InsufficientBalance,
    InsufficientEventBudget,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import (
    Account,
    Event,
    PromotionConsumption,
    Transaction,
    TransactionPromotion,
)
from ..models.ledger import (
    TRANSACTION_TYPES,
    TX_ADJUSTMENT,
    TX_EVENT,
    TX_PURCHASE,
    TX_REDEMPTION,
    TX_TRANSFER,
)
from ..permissions import Action, Role, Target, has_role, require_actor
from ..time_utils import utcnow
from ..validation import (
    optional_remark,
    parse_bool_arg,
    parse_pagination,
    require_bool,
    require_int,
    require_spent,
    require_utorid,
)
from . import promotions_service
from .concurrency import lock_for_update, run_atomic


# =============================================================================
# BALANCES
# =============================================================================

def _counting_filter():
    """SQL form of Transaction.counts_toward_balance."""
    return and_(
        Transaction.suspicious.is_(False),
        or_(Transaction.type != TX_REDEMPTION, Transaction.processed.is_(True)),
    )


def replay_balance(account_id: int) -> int:
    """Recompute a balance from the ledger alone."""
    total = db.session.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
        Transaction.account_id == account_id,
        _counting_filter(),
    ).scalar()
    return int(total or 0)


def pending_holds(account_id: int) -> int:
    """Points reserved by pending, non-suspicious redemption requests."""
    total = db.session.query(func.coalesce(func.sum(Transaction.redeemed), 0)).filter(
        Transaction.account_id == account_id,
        Transaction.type == TX_REDEMPTION,
        Transaction.processed.is_(False),
        Transaction.suspicious.is_(False),
    ).scalar()
    return int(total or 0)


def spendable_balance(account: Account) -> int:
    return account.points - pending_holds(account.id)


def find_mismatched_balances() -> list[tuple[Account, int]]:
    """(account, replayed) for every account whose running total has drifted."""
    mismatches = []
    for account in db.session.query(Account).order_by(Account.id).all():
        replayed = replay_balance(account.id)
        if replayed != account.points:
            mismatches.append((account, replayed))
    return mismatches


def _lock_account(account_id: int) -> Account:
    account = lock_for_update(db.session.query(Account).filter_by(id=account_id)).first()
    if account is None:
        raise NotFound("User not found")
    return account


def _lock_transaction(transaction_id: int) -> Transaction:
    tx = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
    if tx is None:
        raise NotFound("Transaction not found")
    return tx


def _account_by_utorid(utorid) -> Account:
    require_utorid(utorid)
    account = db.session.query(Account).filter_by(utorid=utorid).first()
    if account is None:
        raise NotFound("User not found")
    return account


def _require_verified(actor: Account) -> None:
    if not actor.verified:
        raise AuthorizationError("Account must be verified")


# =============================================================================
# CREATION
# =============================================================================

def base_points(spent: Decimal) -> int:
    rate = Decimal(str(current_app.config.get("POINTS_BASE_RATE", 1)))
    return promotions_service.floor_points(rate * spent)


def create_purchase(
    actor: Account,
    utorid,
    spent,
    promotion_ids=None,
    remark=None,
    *,
    now: datetime | None = None,
) -> Transaction:
    """
    Record a purchase and credit its points.

    amount = floor(base_rate * spent) + promotion bonuses. A purchase rung
    up by a cashier flagged suspicious is itself flagged suspicious and
    credits nothing until a manager clears it. One-time promotions are
    consumed in the same database transaction.
    """
    require_actor(actor, Action.CREATE_PURCHASE)
    spent = require_spent(spent)
    remark = optional_remark(remark)
    customer = _account_by_utorid(utorid)
    now = now or utcnow()
    actor_id = actor.id
    customer_id = customer.id

    def _op():
        cashier = db.session.get(Account, actor_id)
        owner = _lock_account(customer_id)
        outcome = promotions_service.applicable_promotions(owner, spent, promotion_ids, now)
        amount = base_points(spent) + outcome.total_bonus

        tx = Transaction(
            account_id=owner.id,
            type=TX_PURCHASE,
            amount=amount,
            spent=spent,
            created_by_id=cashier.id,
            suspicious=bool(cashier.suspicious),
            remark=remark,
            created_at=now,
        )
        db.session.add(tx)
        db.session.flush()

        for promotion_id in outcome.applied_ids:
            db.session.add(TransactionPromotion(transaction_id=tx.id, promotion_id=promotion_id))
        for promotion_id in outcome.consumed_ids:
            db.session.add(PromotionConsumption(
                account_id=owner.id,
                promotion_id=promotion_id,
                transaction_id=tx.id,
                consumed_at=now,
            ))
        try:
            db.session.flush()
        except IntegrityError:
            raise AlreadyConsumed(promotionIds=outcome.consumed_ids)

        if not tx.suspicious:
            owner.points += amount
        return tx

    return run_atomic(_op)


def create_adjustment(
    actor: Account,
    utorid,
    amount,
    related_id,
    remark=None,
    *,
    now: datetime | None = None,
) -> Transaction:
    """
    Manager correction against an existing transaction of the same owner.

    Any non-zero signed amount, applied immediately with no floor check.
    """
    require_actor(actor, Action.CREATE_ADJUSTMENT)
    amount = require_int(amount, "amount", nonzero=True)
    related_id = require_int(related_id, "relatedId", positive=True)
    remark = optional_remark(remark)
    owner = _account_by_utorid(utorid)
    now = now or utcnow()
    actor_id = actor.id
    owner_id = owner.id

    def _op():
        related = db.session.get(Transaction, related_id)
        if related is None:
            raise NotFound("Related transaction not found")
        if related.account_id != owner_id:
            raise ValidationError("Related transaction belongs to a different user")

        account = _lock_account(owner_id)
        tx = Transaction(
            account_id=account.id,
            type=TX_ADJUSTMENT,
            amount=amount,
            related_id=related.id,
            created_by_id=actor_id,
            remark=remark,
            created_at=now,
        )
        db.session.add(tx)
        account.points += amount
        db.session.flush()
        return tx

    return run_atomic(_op)


def create_redemption(actor: Account, amount, remark=None, *, now: datetime | None = None) -> Transaction:
    """
    Request a redemption. Nothing is deducted until a cashier processes it,
    but the request holds its points against later redemptions and transfers.
    """
    require_actor(actor, Action.REQUEST_REDEMPTION, Target(owner_id=actor.id))
    _require_verified(actor)
    amount = require_int(amount, "amount", positive=True)
    remark = optional_remark(remark)
    now = now or utcnow()
    actor_id = actor.id

    def _op():
        account = _lock_account(actor_id)
        available = spendable_balance(account)
        if amount > available:
            raise InsufficientBalance(available=available, requested=amount)
        # Holds do not touch points; bump the version so concurrent holds conflict
        flag_modified(account, "points")

        tx = Transaction(
            account_id=account.id,
            type=TX_REDEMPTION,
            amount=-amount,
            redeemed=amount,
            processed=False,
            created_by_id=account.id,
            remark=remark,
            created_at=now,
        )
        db.session.add(tx)
        db.session.flush()
        return tx

    return run_atomic(_op)


def mark_processed(actor: Account, transaction_id: int) -> Transaction:
    """
    Process a redemption exactly once.

    A second call raises AlreadyProcessed. Concurrent calls race on the row's
    version_id, so the loser re-runs and sees processed=True.
    """
    require_actor(actor, Action.PROCESS_REDEMPTION)
    actor_id = actor.id

    def _op():
        tx = _lock_transaction(transaction_id)
        if tx.type != TX_REDEMPTION:
            raise ValidationError("Transaction is not a redemption")
        if tx.processed:
            raise AlreadyProcessed()

        owner = _lock_account(tx.account_id)
        if not tx.suspicious:
            if owner.points < tx.redeemed:
                raise InsufficientBalance(available=owner.points, requested=tx.redeemed)
            owner.points -= tx.redeemed

        tx.processed = True
        tx.processed_by_id = actor_id
        db.session.flush()
        return tx

    return run_atomic(_op)


def create_transfer(
    actor: Account,
    recipient,
    amount,
    remark=None,
    *,
    now: datetime | None = None,
) -> tuple[Transaction, Transaction]:
    """
    Move points from actor to recipient.

    recipient is an Account, a utorid string or an integer account id.
    Strings are only ever looked up as utorids.

    Writes the sender row (-amount) and the recipient row (+amount), each
    pointing at the other through related_id, in one database transaction.
    """
    require_actor(actor, Action.CREATE_TRANSFER, Target(owner_id=actor.id))
    _require_verified(actor)
    amount = require_int(amount, "amount", positive=True)
    remark = optional_remark(remark)
    now = now or utcnow()

    if isinstance(recipient, Account):
        recipient_id = recipient.id
    elif isinstance(recipient, str):
        recipient_id = _account_by_utorid(recipient).id
    else:
        recipient_id = require_int(recipient, "recipient", positive=True)
    sender_id = actor.id
    if recipient_id == sender_id:
        raise ValidationError("Cannot transfer points to yourself")

    def _op():
        # Lock in id order so two opposite transfers cannot deadlock
        first, second = sorted((sender_id, recipient_id))
        locked = {first: _lock_account(first), second: _lock_account(second)}
        sender, receiver = locked[sender_id], locked[recipient_id]

        available = spendable_balance(sender)
        if amount > available:
            raise InsufficientBalance(available=available, requested=amount)

        sent = Transaction(
            account_id=sender.id,
            type=TX_TRANSFER,
            amount=-amount,
            created_by_id=sender.id,
            remark=remark,
            created_at=now,
        )
        received = Transaction(
            account_id=receiver.id,
            type=TX_TRANSFER,
            amount=amount,
            created_by_id=sender.id,
            remark=remark,
            created_at=now,
        )
        db.session.add_all([sent, received])
        db.session.flush()
        sent.related_id = received.id
        received.related_id = sent.id

        sender.points -= amount
        receiver.points += amount
        db.session.flush()
        return sent, received

    return run_atomic(_op)


def award_event_points(
    actor: Account,
    event_id: int,
    amount,
    utorid=None,
    remark=None,
    *,
    now: datetime | None = None,
) -> list[Transaction]:
    """
    Award points from an event's budget.

    With utorid, to that guest only; without, the same amount to every
    current guest. The budget check covers the whole call, so either every
    recipient is credited or none is.
    """
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFound("Event not found")
    require_actor(actor, Action.AWARD_EVENT_POINTS, organizes_event=actor.id in event.organizer_ids)
    amount = require_int(amount, "amount", positive=True)
    remark = optional_remark(remark)
    now = now or utcnow()
    actor_id = actor.id

    single_id = None
    if utorid is not None:
        single_id = _account_by_utorid(utorid).id

    def _op():
        locked_event = lock_for_update(db.session.query(Event).filter_by(id=event_id)).first()
        if locked_event is None:
            raise NotFound("Event not found")

        guest_ids = sorted(locked_event.guest_ids)
        if single_id is not None:
            if single_id not in guest_ids:
                raise ValidationError("User is not a guest of this event")
            recipients = [single_id]
        else:
            if not guest_ids:
                raise ValidationError("Event has no guests")
            recipients = guest_ids

        total = amount * len(recipients)
        if total > locked_event.points_remain:
            raise InsufficientEventBudget(remaining=locked_event.points_remain, requested=total)

        awarded = []
        for account_id in recipients:
            account = _lock_account(account_id)
            tx = Transaction(
                account_id=account.id,
                type=TX_EVENT,
                amount=amount,
                event_id=locked_event.id,
                created_by_id=actor_id,
                remark=remark,
                created_at=now,
            )
            db.session.add(tx)
            account.points += amount
            awarded.append(tx)

        locked_event.points_remain -= total
        locked_event.points_awarded += total
        db.session.flush()
        return awarded

    return run_atomic(_op)


def create_transaction(actor: Account, data: dict) -> Transaction:
    """Dispatch POST /transactions bodies to purchase or adjustment."""
    tx_type = data.get("type")
    if tx_type == TX_PURCHASE:
        return create_purchase(
            actor,
            data.get("utorid"),
            data.get("spent"),
            data.get("promotionIds"),
            data.get("remark"),
        )
    if tx_type == TX_ADJUSTMENT:
        return create_adjustment(
            actor,
            data.get("utorid"),
            data.get("amount"),
            data.get("relatedId"),
            data.get("remark"),
        )
    raise ValidationError("type must be purchase or adjustment")


# =============================================================================
# FLAGS
# =============================================================================

def set_suspicious(actor: Account, transaction_id: int, suspicious) -> Transaction:
    """
    Flag or clear a transaction, then rebuild the owner's balance from the
    ledger. Suspicious rows never count, whenever the flag was set.
    """
    require_actor(actor, Action.FLAG_TRANSACTION)
    suspicious = require_bool(suspicious, "suspicious")

    def _op():
        tx = _lock_transaction(transaction_id)
        if tx.suspicious == suspicious:
            return tx
        owner = _lock_account(tx.account_id)
        tx.suspicious = suspicious
        db.session.flush()
        owner.points = replay_balance(owner.id)
        return tx

    return run_atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(actor: Account, transaction_id: int) -> Transaction:
    require_actor(actor, Action.VIEW_TRANSACTION)
    tx = db.session.get(Transaction, transaction_id)
    if tx is None:
        raise NotFound("Transaction not found")
    return tx


def _apply_common_filters(q, args):
    tx_type = args.get("type")
    if tx_type:
        if tx_type not in TRANSACTION_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(TRANSACTION_TYPES)}")
        q = q.filter(Transaction.type == tx_type)

    related_id = args.get("relatedId")
    if related_id is not None:
        if not tx_type:
            raise ValidationError("relatedId must be used with type")
        related_id = require_int(related_id, "relatedId", positive=True)
        if tx_type == TX_EVENT:
            q = q.filter(Transaction.event_id == related_id)
        else:
            q = q.filter(Transaction.related_id == related_id)

    promotion_id = args.get("promotionId")
    if promotion_id is not None:
        promotion_id = require_int(promotion_id, "promotionId", positive=True)
        q = q.join(TransactionPromotion, TransactionPromotion.transaction_id == Transaction.id).filter(
            TransactionPromotion.promotion_id == promotion_id
        )

    amount = args.get("amount")
    operator = args.get("operator")
    if (amount is None) != (operator is None):
        raise ValidationError("amount and operator must be used together")
    if amount is not None:
        amount = require_int(amount, "amount")
        if operator == "gte":
            q = q.filter(Transaction.amount >= amount)
        elif operator == "lte":
            q = q.filter(Transaction.amount <= amount)
        else:
            raise ValidationError("operator must be gte or lte")
    return q


def _paginate(q, args) -> tuple[int, list[Transaction]]:
    page, limit = parse_pagination(args)
    count = q.count()
    rows = q.order_by(Transaction.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return count, rows


def list_transactions(actor: Account, args) -> tuple[int, list[Transaction]]:
    """
    Managers see every row; cashiers see the rows they created.

    Filters: name, createdBy, suspicious, promotionId, type, relatedId,
    amount + operator, page, limit.
    """
    require_actor(actor, Action.LIST_TRANSACTIONS)
    q = db.session.query(Transaction).join(Account, Account.id == Transaction.account_id)

    if not has_role(actor.role_enum, Role.MANAGER):
        q = q.filter(Transaction.created_by_id == actor.id)

    name = args.get("name")
    if name:
        q = q.filter(or_(Account.utorid.ilike(f"%{name}%"), Account.name.ilike(f"%{name}%")))

    created_by = args.get("createdBy")
    if created_by:
        creator = db.session.query(Account.id).filter_by(utorid=created_by).scalar_subquery()
        q = q.filter(Transaction.created_by_id == creator)

    suspicious = parse_bool_arg(args.get("suspicious"), "suspicious")
    if suspicious is not None:
        q = q.filter(Transaction.suspicious.is_(suspicious))

    q = _apply_common_filters(q, args)
    return _paginate(q, args)


def list_own_transactions(actor: Account, args) -> tuple[int, list[Transaction]]:
    require_actor(actor, Action.LIST_OWN_TRANSACTIONS, Target(owner_id=actor.id))
    q = db.session.query(Transaction).filter(Transaction.account_id == actor.id)
    q = _apply_common_filters(q, args)
    return _paginate(q, args)
