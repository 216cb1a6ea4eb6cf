from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


PROMO_AUTOMATIC = "automatic"
PROMO_ONETIME = "onetime"

PROMOTION_TYPES = (PROMO_AUTOMATIC, PROMO_ONETIME)


class Promotion(db.Model):
    """
    Bonus-point promotion.

    automatic: applies to every purchase in [start_time, end_time) that meets
    min_spending.
    onetime: applies only when selected on a purchase, and at most once per
    account (see PromotionConsumption).

    Bonus = points (flat) + floor(rate * spent); either part may be unset.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.CheckConstraint("type IN ('automatic', 'onetime')", name="ck_promotions_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    type = db.Column(db.String(16), nullable=False, index=True)

    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False, index=True)

    min_spending = db.Column(db.Numeric(10, 2), nullable=True)
    rate = db.Column(db.Numeric(10, 4), nullable=True)
    points = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def is_active(self, now) -> bool:
        return self.start_time <= now < self.end_time

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "startTime": to_utc_z(self.start_time),
            "endTime": to_utc_z(self.end_time),
            "minSpending": float(self.min_spending) if self.min_spending is not None else None,
            "rate": float(self.rate) if self.rate is not None else None,
            "points": self.points if self.points is not None else 0,
        }


class PromotionConsumption(db.Model):
    """
    One-time promotion usage by an account.

    The (account_id, promotion_id) uniqueness constraint is what stops two
    concurrent purchases from consuming the same one-time promotion.
    """
    __tablename__ = "promotion_consumptions"
    __table_args__ = (
        db.UniqueConstraint("account_id", "promotion_id", name="uq_promotion_consumptions"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False)
    consumed_at = db.Column(db.DateTime, nullable=False, default=utcnow)
