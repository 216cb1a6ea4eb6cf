from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Event(db.Model):
    """
    Community event with a points budget.

    points_total is the budget set by a manager; points_remain +
    points_awarded always equals points_total and points_remain never goes
    negative. published moves false -> true only.
    """
    __tablename__ = "events"
    __table_args__ = (
        db.CheckConstraint("points_remain >= 0", name="ck_events_points_remain"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False, default="")
    location = db.Column(db.String(255), nullable=False)

    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False, index=True)
    capacity = db.Column(db.Integer, nullable=True)

    points_total = db.Column(db.Integer, nullable=False, default=0)
    points_remain = db.Column(db.Integer, nullable=False, default=0)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)

    published = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    organizer_links = db.relationship("EventOrganizer", backref="event", lazy=True, cascade="all, delete-orphan")
    guest_links = db.relationship("EventGuest", backref="event", lazy=True, cascade="all, delete-orphan")

    @property
    def organizer_ids(self) -> set[int]:
        return {link.account_id for link in self.organizer_links}

    @property
    def guest_ids(self) -> set[int]:
        return {link.account_id for link in self.guest_links}

    @property
    def num_guests(self) -> int:
        return len(self.guest_links)

    @property
    def is_full(self) -> bool:
        return self.capacity is not None and self.num_guests >= self.capacity

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "startTime": to_utc_z(self.start_time),
            "endTime": to_utc_z(self.end_time),
            "capacity": self.capacity,
            "numGuests": self.num_guests,
        }

    def to_dict(self) -> dict:
        data = self.to_summary()
        data.update({
            "description": self.description,
            "pointsRemain": self.points_remain,
            "pointsAwarded": self.points_awarded,
            "published": self.published,
        })
        return data


class EventOrganizer(db.Model):
    __tablename__ = "event_organizers"
    __table_args__ = (
        db.UniqueConstraint("event_id", "account_id", name="uq_event_organizers"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    account = db.relationship("Account")


class EventGuest(db.Model):
    __tablename__ = "event_guests"
    __table_args__ = (
        db.UniqueConstraint("event_id", "account_id", name="uq_event_guests"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    account = db.relationship("Account")
