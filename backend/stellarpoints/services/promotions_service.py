# Overview: Promotion CRUD and the promotion engine used by purchases.

"""
Promotion Engine

Automatic promotions apply to every purchase inside their window that meets
min_spending. One-time promotions apply only when the cashier lists them on
the purchase, and at most once per account; a bad id fails the whole
purchase instead of being dropped.

Bonus per applied promotion = points (flat) + floor(rate * spent).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal

from ..errors import (
    AlreadyConsumed,
    AuthorizationError,
    InvalidPromotion,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Account, Promotion, PromotionConsumption
from ..models.promotions import PROMO_AUTOMATIC, PROMO_ONETIME, PROMOTION_TYPES
from ..permissions import Action, Role, has_role, require_actor
from ..time_utils import require_datetime, utcnow
from ..validation import (
    MAX_RATE,
    MAX_SPENT,
    parse_bool_arg,
    parse_pagination,
    require_int,
    require_positive_decimal,
)
from .concurrency import run_atomic


def floor_points(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


@dataclass
class PromotionOutcome:
    automatic_bonus: int = 0
    one_time_bonus: int = 0
    consumed_ids: list[int] = field(default_factory=list)
    applied_ids: list[int] = field(default_factory=list)

    @property
    def total_bonus(self) -> int:
        return self.automatic_bonus + self.one_time_bonus


def promotion_bonus(promotion: Promotion, spent: Decimal) -> int:
    bonus = promotion.points or 0
    if promotion.rate is not None:
        bonus += floor_points(Decimal(promotion.rate) * spent)
    return bonus


def _meets_min_spending(promotion: Promotion, spent: Decimal) -> bool:
    return promotion.min_spending is None or spent >= Decimal(promotion.min_spending)


def is_consumed(account_id: int, promotion_id: int) -> bool:
    return db.session.query(PromotionConsumption.id).filter_by(
        account_id=account_id,
        promotion_id=promotion_id,
    ).first() is not None


def applicable_promotions(
    account: Account,
    spent: Decimal,
    requested_ids,
    now: datetime,
) -> PromotionOutcome:
    """
    Work out which promotions a purchase earns.

    Raises InvalidPromotion if any requested id is unknown, not one-time,
    outside its window or below min spending; AlreadyConsumed if the
    account already used it. Read-only: the caller records consumption.
    """
    outcome = PromotionOutcome()

    automatic = db.session.query(Promotion).filter(
        Promotion.type == PROMO_AUTOMATIC,
        Promotion.start_time <= now,
        Promotion.end_time > now,
    ).order_by(Promotion.id).all()
    for promotion in automatic:
        if _meets_min_spending(promotion, spent):
            outcome.automatic_bonus += promotion_bonus(promotion, spent)
            outcome.applied_ids.append(promotion.id)

    if requested_ids is None:
        requested_ids = []
    if not isinstance(requested_ids, list):
        raise ValidationError("promotionIds must be a list of integers")

    seen: set[int] = set()
    for raw_id in requested_ids:
        promotion_id = require_int(raw_id, "promotionIds", positive=True)
        if promotion_id in seen:
            raise InvalidPromotion(f"Promotion {promotion_id} listed more than once", promotionId=promotion_id)
        seen.add(promotion_id)

        promotion = db.session.get(Promotion, promotion_id)
        if promotion is None:
            raise InvalidPromotion(f"Promotion {promotion_id} does not exist", promotionId=promotion_id)
        if promotion.type != PROMO_ONETIME:
            raise InvalidPromotion(f"Promotion {promotion_id} is not a one-time promotion", promotionId=promotion_id)
        if not promotion.is_active(now):
            raise InvalidPromotion(f"Promotion {promotion_id} is not active", promotionId=promotion_id)
        if not _meets_min_spending(promotion, spent):
            raise InvalidPromotion(
                f"Promotion {promotion_id} requires a minimum spend of {promotion.min_spending}",
                promotionId=promotion_id,
            )
        if is_consumed(account.id, promotion_id):
            raise AlreadyConsumed(promotionId=promotion_id)

        outcome.one_time_bonus += promotion_bonus(promotion, spent)
        outcome.consumed_ids.append(promotion_id)
        outcome.applied_ids.append(promotion_id)

    return outcome


def available_onetime_promotions(account_id: int, now: datetime | None = None) -> list[Promotion]:
    """Active one-time promotions the account has not used yet."""
    now = now or utcnow()
    consumed = db.session.query(PromotionConsumption.promotion_id).filter_by(account_id=account_id)
    return db.session.query(Promotion).filter(
        Promotion.type == PROMO_ONETIME,
        Promotion.start_time <= now,
        Promotion.end_time > now,
        Promotion.id.notin_(consumed),
    ).order_by(Promotion.id).all()


# =============================================================================
# CRUD
# =============================================================================

def _parse_type(value) -> str:
    if value not in PROMOTION_TYPES:
        raise ValidationError("type must be automatic or onetime")
    return value


def _parse_optional_amounts(data: dict) -> dict:
    values = {}
    if data.get("minSpending") is not None:
        values["min_spending"] = require_positive_decimal(
            data["minSpending"], "minSpending", places=2, maximum=MAX_SPENT
        )
    if data.get("rate") is not None:
        values["rate"] = require_positive_decimal(data["rate"], "rate", places=4, maximum=MAX_RATE)
    if data.get("points") is not None:
        values["points"] = require_int(data["points"], "points", positive=True)
    return values


def create_promotion(actor: Account, data: dict, *, now: datetime | None = None) -> Promotion:
    require_actor(actor, Action.MANAGE_PROMOTIONS)
    now = now or utcnow()

    name = data.get("name")
    description = data.get("description")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required")
    if not isinstance(description, str):
        raise ValidationError("description is required")
    promo_type = _parse_type(data.get("type"))
    start_time = require_datetime(data.get("startTime"), "startTime")
    end_time = require_datetime(data.get("endTime"), "endTime")
    if start_time < now:
        raise ValidationError("startTime must not be in the past")
    if end_time <= start_time:
        raise ValidationError("endTime must be after startTime")
    amounts = _parse_optional_amounts(data)

    def _op():
        promotion = Promotion(
            name=name.strip(),
            description=description,
            type=promo_type,
            start_time=start_time,
            end_time=end_time,
            created_at=now,
            **amounts,
        )
        db.session.add(promotion)
        db.session.flush()
        return promotion

    return run_atomic(_op)


def get_promotion(actor: Account, promotion_id: int, *, now: datetime | None = None) -> Promotion:
    """Regular users and cashiers only see promotions that are currently active."""
    require_actor(actor, Action.VIEW_PROMOTIONS)
    now = now or utcnow()
    promotion = db.session.get(Promotion, promotion_id)
    if promotion is None:
        raise NotFound("Promotion not found")
    if not has_role(actor.role_enum, Role.MANAGER) and not promotion.is_active(now):
        raise NotFound("Promotion not found")
    return promotion


def list_promotions(actor: Account, args, *, now: datetime | None = None) -> tuple[int, list[Promotion]]:
    require_actor(actor, Action.VIEW_PROMOTIONS)
    now = now or utcnow()
    page, limit = parse_pagination(args)

    q = db.session.query(Promotion)
    name = args.get("name")
    if name:
        q = q.filter(Promotion.name.ilike(f"%{name}%"))
    promo_type = args.get("type")
    if promo_type:
        q = q.filter(Promotion.type == _parse_type(promo_type))

    if has_role(actor.role_enum, Role.MANAGER):
        started = parse_bool_arg(args.get("started"), "started")
        ended = parse_bool_arg(args.get("ended"), "ended")
        if started is not None and ended is not None:
            raise ValidationError("started and ended cannot both be specified")
        if started is not None:
            q = q.filter(Promotion.start_time <= now) if started else q.filter(Promotion.start_time > now)
        if ended is not None:
            q = q.filter(Promotion.end_time <= now) if ended else q.filter(Promotion.end_time > now)
    else:
        consumed = db.session.query(PromotionConsumption.promotion_id).filter_by(account_id=actor.id)
        q = q.filter(
            Promotion.start_time <= now,
            Promotion.end_time > now,
            Promotion.id.notin_(consumed),
        )

    count = q.count()
    rows = q.order_by(Promotion.start_time, Promotion.id).offset((page - 1) * limit).limit(limit).all()
    return count, rows


def update_promotion(actor: Account, promotion_id: int, data: dict, *, now: datetime | None = None) -> Promotion:
    """
    Edit a promotion.

    Once started only endTime may change, and once ended nothing may.
    New start/end times must not be in the past.
    """
    require_actor(actor, Action.MANAGE_PROMOTIONS)
    now = now or utcnow()

    promotion = db.session.get(Promotion, promotion_id)
    if promotion is None:
        raise NotFound("Promotion not found")

    updates = {}
    if data.get("name") is not None:
        if not isinstance(data["name"], str) or not data["name"].strip():
            raise ValidationError("name must be a non-empty string")
        updates["name"] = data["name"].strip()
    if data.get("description") is not None:
        if not isinstance(data["description"], str):
            raise ValidationError("description must be a string")
        updates["description"] = data["description"]
    if data.get("type") is not None:
        updates["type"] = _parse_type(data["type"])
    if data.get("startTime") is not None:
        updates["start_time"] = require_datetime(data["startTime"], "startTime")
        if updates["start_time"] < now:
            raise ValidationError("startTime must not be in the past")
    if data.get("endTime") is not None:
        updates["end_time"] = require_datetime(data["endTime"], "endTime")
        if updates["end_time"] < now:
            raise ValidationError("endTime must not be in the past")
    updates.update(_parse_optional_amounts(data))

    start_time = updates.get("start_time", promotion.start_time)
    end_time = updates.get("end_time", promotion.end_time)
    if end_time <= start_time:
        raise ValidationError("endTime must be after startTime")

    if promotion.start_time <= now:
        frozen = sorted(set(updates) - {"end_time"})
        if frozen:
            raise ValidationError(
                "Cannot update a promotion after it has started", fields=frozen
            )
    if "end_time" in updates and promotion.end_time <= now:
        raise ValidationError("Cannot update endTime after the promotion has ended")

    def _op():
        for key, value in updates.items():
            setattr(promotion, key, value)
        return promotion

    return run_atomic(_op)


def delete_promotion(actor: Account, promotion_id: int, *, now: datetime | None = None) -> None:
    require_actor(actor, Action.MANAGE_PROMOTIONS)
    now = now or utcnow()

    promotion = db.session.get(Promotion, promotion_id)
    if promotion is None:
        raise NotFound("Promotion not found")
    if promotion.start_time <= now:
        raise AuthorizationError("Cannot delete a promotion that has already started")
    if db.session.query(PromotionConsumption.id).filter_by(promotion_id=promotion_id).first():
        raise AuthorizationError("Cannot delete a promotion that has been used")

    def _op():
        db.session.delete(promotion)

    run_atomic(_op)
