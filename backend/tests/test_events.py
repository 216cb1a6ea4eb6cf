"""
Event lifecycle tests: capacity, organizers, guests and point awards.
"""

from datetime import datetime, timedelta

import pytest

from conftest import make_account, window
from stellarpoints.errors import (
    AuthorizationError,
    CapacityExceeded,
    EventEnded,
    InsufficientEventBudget,
    NotFound,
    ValidationError,
)
from stellarpoints.extensions import db
from stellarpoints.models import Event, Transaction
from stellarpoints.permissions import Role
from stellarpoints.services import event_service, ledger_service
from stellarpoints.time_utils import utcnow


def _event(manager, *, capacity=None, points=100, start=timedelta(hours=1), end=timedelta(days=1), published=False):
    start_time, end_time = window(start, end)
    event = event_service.create_event(manager, {
        "name": "Study Night",
        "description": "Bring snacks",
        "location": "BA 1234",
        "startTime": start_time,
        "endTime": end_time,
        "capacity": capacity,
        "points": points,
    }, now=utcnow() - timedelta(hours=2))
    if published:
        event = event_service.update_event(manager, event.id, {"published": True})
    return event


class TestEventCrud:

    def test_create_requires_positive_points(self, manager):
        with pytest.raises(ValidationError):
            _event(manager, points=0)

    def test_cashier_cannot_create(self, cashier):
        start, end = window(timedelta(hours=1), timedelta(days=1))
        with pytest.raises(AuthorizationError):
            event_service.create_event(cashier, {
                "name": "x", "description": "x", "location": "x",
                "startTime": start, "endTime": end, "points": 10,
            })

    def test_offset_times_are_stored_as_utc(self, manager):
        event = event_service.create_event(manager, {
            "name": "Late Lab", "description": "x", "location": "MY 150",
            "startTime": "2030-01-01T10:00:00-05:00", "endTime": "2030-01-01T20:00:00Z", "points": 10,
        })
        assert event.start_time == datetime(2030, 1, 1, 15, 0)
        assert event.to_dict()["startTime"] == "2030-01-01T15:00:00Z"
        assert event.to_dict()["endTime"] == "2030-01-01T20:00:00Z"

    @pytest.mark.parametrize("start", [None, "", "tomorrow", "2030-13-01T10:00:00Z", 1893456000])
    def test_start_time_must_be_iso_8601(self, manager, start):
        with pytest.raises(ValidationError):
            event_service.create_event(manager, {
                "name": "x", "description": "x", "location": "x",
                "startTime": start, "endTime": "2030-01-02T10:00:00Z", "points": 10,
            })

    def test_new_event_is_unpublished(self, manager):
        event = _event(manager)
        assert event.published is False
        assert event.points_remain == 100
        assert event.points_awarded == 0

    def test_only_manager_publishes(self, manager, alice):
        event = _event(manager)
        event_service.add_organizer(manager, event.id, alice.utorid)

        with pytest.raises(AuthorizationError):
            event_service.update_event(alice, event.id, {"published": True})
        with pytest.raises(AuthorizationError):
            event_service.update_event(alice, event.id, {"points": 500})

        renamed = event_service.update_event(alice, event.id, {"name": "Exam Prep"})
        assert renamed.name == "Exam Prep"

    def test_published_cannot_be_unset(self, manager):
        event = _event(manager)
        with pytest.raises(ValidationError):
            event_service.update_event(manager, event.id, {"published": False})

    def test_started_event_freezes_fields(self, manager):
        event = _event(manager, start=timedelta(hours=-1))
        with pytest.raises(ValidationError):
            event_service.update_event(manager, event.id, {"location": "SS 2102"})

    def test_points_cannot_drop_below_awarded(self, manager, alice):
        event = _event(manager, points=100)
        event_service.add_guest(manager, event.id, alice.utorid)
        ledger_service.award_event_points(manager, event.id, 60)

        with pytest.raises(ValidationError):
            event_service.update_event(manager, event.id, {"points": 50})

        updated = event_service.update_event(manager, event.id, {"points": 80})
        assert updated.points_remain == 20

    def test_published_event_cannot_be_deleted(self, manager):
        event = _event(manager, published=True)
        with pytest.raises(ValidationError):
            event_service.delete_event(manager, event.id)

    def test_delete_unpublished(self, manager):
        event = _event(manager)
        event_id = event.id
        event_service.delete_event(manager, event_id)
        assert db.session.get(Event, event_id) is None

    def test_regular_users_list_published_only(self, manager, alice):
        _event(manager)
        published = _event(manager, published=True)

        count, rows = event_service.list_events(alice, {})
        assert count == 1
        assert rows[0].id == published.id

        count, _ = event_service.list_events(manager, {})
        assert count == 2

    def test_unpublished_event_hidden_from_regular_users(self, manager, alice):
        event = _event(manager)
        with pytest.raises(NotFound):
            event_service.get_event(alice, event.id)


class TestGuests:

    def test_capacity_is_enforced(self, manager, alice, bob, carol):
        event = _event(manager, capacity=2, published=True)

        event_service.rsvp(alice, event.id)
        event_service.rsvp(bob, event.id)
        with pytest.raises(CapacityExceeded):
            event_service.rsvp(carol, event.id)

        db.session.expire_all()
        assert db.session.get(Event, event.id).num_guests == 2

    def test_cancel_frees_a_seat(self, manager, alice, bob):
        event = _event(manager, capacity=1, published=True)
        event_service.rsvp(alice, event.id)
        event_service.cancel_rsvp(alice, event.id)
        event_service.rsvp(bob, event.id)
        assert event_service.get_event(manager, event.id)[0].guest_ids == {bob.id}

    def test_rsvp_requires_published(self, manager, alice):
        event = _event(manager)
        with pytest.raises(NotFound):
            event_service.rsvp(alice, event.id)

    def test_duplicate_rsvp_rejected(self, manager, alice):
        event = _event(manager, published=True)
        event_service.rsvp(alice, event.id)
        with pytest.raises(ValidationError):
            event_service.rsvp(alice, event.id)

    def test_ended_event_rejects_guests(self, manager, alice):
        event = _event(manager, start=timedelta(minutes=-90), end=timedelta(minutes=-10), published=True)
        with pytest.raises(EventEnded):
            event_service.rsvp(alice, event.id)

    def test_organizer_cannot_be_guest(self, manager, alice):
        event = _event(manager, published=True)
        event_service.add_organizer(manager, event.id, alice.utorid)
        with pytest.raises(ValidationError):
            event_service.rsvp(alice, event.id)

    def test_guest_cannot_be_organizer(self, manager, alice):
        event = _event(manager, published=True)
        event_service.rsvp(alice, event.id)
        with pytest.raises(ValidationError):
            event_service.add_organizer(manager, event.id, alice.utorid)

    def test_organizer_adds_guests(self, manager, alice, bob):
        event = _event(manager)
        event_service.add_organizer(manager, event.id, alice.utorid)

        _, added = event_service.add_guest(alice, event.id, bob.utorid)
        assert added.id == bob.id

    def test_stranger_cannot_add_guests(self, manager, alice, bob):
        event = _event(manager)
        with pytest.raises(AuthorizationError):
            event_service.add_guest(alice, event.id, bob.utorid)


class TestAwards:

    def test_award_single_guest(self, manager, alice, bob):
        event = _event(manager, points=100)
        event_service.add_guest(manager, event.id, alice.utorid)
        event_service.add_guest(manager, event.id, bob.utorid)

        awarded = ledger_service.award_event_points(manager, event.id, 30, utorid=alice.utorid)

        assert len(awarded) == 1
        assert alice.points == 30
        assert bob.points == 0
        event = db.session.get(Event, event.id)
        assert event.points_remain == 70
        assert event.points_awarded == 30

    def test_award_all_guests(self, manager, alice, bob):
        event = _event(manager, points=100)
        event_service.add_guest(manager, event.id, alice.utorid)
        event_service.add_guest(manager, event.id, bob.utorid)

        awarded = ledger_service.award_event_points(manager, event.id, 25)

        assert {tx.account_id for tx in awarded} == {alice.id, bob.id}
        assert all(tx.event_id == event.id for tx in awarded)
        assert alice.points == bob.points == 25

    def test_insufficient_budget_awards_nobody(self, manager, alice, bob):
        event = _event(manager, points=50)
        event_service.add_guest(manager, event.id, alice.utorid)
        event_service.add_guest(manager, event.id, bob.utorid)

        with pytest.raises(InsufficientEventBudget):
            ledger_service.award_event_points(manager, event.id, 30)

        db.session.expire_all()
        assert db.session.query(Transaction).count() == 0
        assert alice.points == 0
        assert bob.points == 0
        assert db.session.get(Event, event.id).points_remain == 50

    def test_award_requires_guest(self, manager, alice):
        event = _event(manager)
        with pytest.raises(ValidationError):
            ledger_service.award_event_points(manager, event.id, 10, utorid=alice.utorid)

    def test_award_to_empty_event(self, manager):
        event = _event(manager)
        with pytest.raises(ValidationError):
            ledger_service.award_event_points(manager, event.id, 10)

    def test_organizer_may_award(self, manager, alice, bob):
        event = _event(manager)
        event_service.add_organizer(manager, event.id, alice.utorid)
        event_service.add_guest(manager, event.id, bob.utorid)

        ledger_service.award_event_points(alice, event.id, 10, utorid=bob.utorid)
        assert bob.points == 10

    def test_non_organizer_may_not_award(self, manager, alice, bob):
        event = _event(manager)
        event_service.add_guest(manager, event.id, bob.utorid)
        cashier = make_account("cashie02", Role.CASHIER)

        with pytest.raises(AuthorizationError):
            ledger_service.award_event_points(cashier, event.id, 10, utorid=bob.utorid)
