from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


TX_PURCHASE = "purchase"
TX_TRANSFER = "transfer"
TX_REDEMPTION = "redemption"
TX_ADJUSTMENT = "adjustment"
TX_EVENT = "event"

TRANSACTION_TYPES = (TX_PURCHASE, TX_TRANSFER, TX_REDEMPTION, TX_ADJUSTMENT, TX_EVENT)


class Transaction(db.Model):
    """
    Append-mostly ledger of point-affecting events.

    TRANSACTION TYPES:
    - purchase: points earned at a cashier; amount >= 0, spent recorded
    - transfer: paired rows (sender -n, recipient +n), related_id links them
    - redemption: amount = -redeemed; counts toward the balance only once
      processed
    - adjustment: manager correction of an existing row (related_id), any
      non-zero signed amount
    - event: award to an event guest, event_id set

    IMMUTABLE: Rows are never deleted. Only `suspicious` and `processed`
    (plus processed_by_id) change after creation.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_account_type", "account_id", "type"),
        db.CheckConstraint(
            "type IN ('purchase', 'transfer', 'redemption', 'adjustment', 'event')",
            name="ck_transactions_type",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    spent = db.Column(db.Numeric(10, 2), nullable=True)
    redeemed = db.Column(db.Integer, nullable=True)

    related_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    processed_by_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)

    processed = db.Column(db.Boolean, nullable=False, default=False)
    suspicious = db.Column(db.Boolean, nullable=False, default=False, index=True)
    remark = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    account = db.relationship("Account", foreign_keys=[account_id], backref=db.backref("transactions", lazy=True))
    created_by = db.relationship("Account", foreign_keys=[created_by_id])
    processed_by = db.relationship("Account", foreign_keys=[processed_by_id])
    related = db.relationship("Transaction", remote_side=[id], foreign_keys=[related_id], post_update=True)
    promotion_links = db.relationship(
        "TransactionPromotion",
        backref="transaction",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TransactionPromotion.promotion_id",
    )

    @property
    def promotion_ids(self) -> list[int]:
        return [link.promotion_id for link in self.promotion_links]

    @property
    def counts_toward_balance(self) -> bool:
        """A row contributes to the balance unless suspicious or a pending redemption."""
        if self.suspicious:
            return False
        if self.type == TX_REDEMPTION and not self.processed:
            return False
        return True

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "utorid": self.account.utorid if self.account else None,
            "type": self.type,
            "amount": self.amount,
            "promotionIds": self.promotion_ids,
            "suspicious": self.suspicious,
            "remark": self.remark or "",
            "createdBy": self.created_by.utorid if self.created_by else None,
            "createdAt": to_utc_z(self.created_at),
        }
        if self.type == TX_PURCHASE:
            data["spent"] = float(self.spent) if self.spent is not None else None
        elif self.type == TX_REDEMPTION:
            data["redeemed"] = self.redeemed
            data["processed"] = self.processed
            data["processedBy"] = self.processed_by.utorid if self.processed_by else None
            data["relatedId"] = self.related_id
        elif self.type == TX_EVENT:
            data["relatedId"] = self.event_id
        else:
            data["relatedId"] = self.related_id
        return data


class TransactionPromotion(db.Model):
    """Promotions applied to a purchase row."""
    __tablename__ = "transaction_promotions"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "promotion_id", name="uq_transaction_promotions"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=False, index=True)
