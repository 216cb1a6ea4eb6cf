# Overview: Service-layer operations for events; organizers, guests and lifecycle rules.

"""
Event Service

Events are created by managers and run by organizers. Organizer is a
per-event capability: an account listed as an organizer may edit the
event, manage guests and award points from its budget, but not change the
budget or publish it.

LIFECYCLE RULES:
- published moves false -> true only, manager-only
- name, description, location, startTime, capacity freeze once started
- endTime freezes once ended
- capacity can never drop below the current guest count
- only unpublished events can be deleted
- an account cannot be both organizer and guest of the same event
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm.attributes import flag_modified

from ..errors import (
    AuthorizationError,
    CapacityExceeded,
    EventEnded,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Account, Event, EventGuest, EventOrganizer
from ..permissions import Action, Role, has_role, require_actor
from ..time_utils import require_datetime, utcnow
from ..validation import (
    parse_bool_arg,
    parse_order_by,
    parse_pagination,
    require_int,
    require_utorid,
)
from .concurrency import lock_for_update, run_atomic


EVENT_ORDER_FIELDS = ("startTime", "endTime", "name", "id")

_ORDER_COLUMNS = {
    "startTime": Event.start_time,
    "endTime": Event.end_time,
    "name": Event.name,
    "id": Event.id,
}

_FROZEN_AFTER_START = ("name", "description", "location", "start_time", "capacity")


def is_organizer(account: Account, event: Event) -> bool:
    return account.id in event.organizer_ids


def can_manage(account: Account, event: Event) -> bool:
    """Managers and the event's own organizers."""
    return has_role(account.role_enum, Role.MANAGER) or is_organizer(account, event)


def _get_event(event_id: int) -> Event:
    event = db.session.get(Event, event_id)
    if event is None:
        raise NotFound("Event not found")
    return event


def _lock_event(event_id: int) -> Event:
    event = lock_for_update(db.session.query(Event).filter_by(id=event_id)).first()
    if event is None:
        raise NotFound("Event not found")
    return event


def _touch(event: Event) -> None:
    """Force an UPDATE so the version_id check serialises guest-list writers."""
    flag_modified(event, "capacity")


def _account_by_utorid(utorid) -> Account:
    require_utorid(utorid)
    account = db.session.query(Account).filter_by(utorid=utorid).first()
    if account is None:
        raise NotFound("User not found")
    return account


def _parse_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string")
    return value.strip()


def _parse_capacity(value):
    if value is None:
        return None
    return require_int(value, "capacity", positive=True)


# =============================================================================
# CRUD
# =============================================================================

def create_event(actor: Account, data: dict, *, now: datetime | None = None) -> Event:
    require_actor(actor, Action.MANAGE_EVENTS)
    now = now or utcnow()

    name = _parse_text(data.get("name"), "name")
    description = _parse_text(data.get("description"), "description")
    location = _parse_text(data.get("location"), "location")
    start_time = require_datetime(data.get("startTime"), "startTime")
    end_time = require_datetime(data.get("endTime"), "endTime")
    if start_time < now:
        raise ValidationError("startTime must not be in the past")
    if end_time <= start_time:
        raise ValidationError("endTime must be after startTime")
    capacity = _parse_capacity(data.get("capacity"))
    points = require_int(data.get("points"), "points", positive=True)

    def _op():
        event = Event(
            name=name,
            description=description,
            location=location,
            start_time=start_time,
            end_time=end_time,
            capacity=capacity,
            points_total=points,
            points_remain=points,
            points_awarded=0,
            published=False,
            created_at=now,
        )
        db.session.add(event)
        db.session.flush()
        return event

    return run_atomic(_op)


def get_event(actor: Account, event_id: int) -> tuple[Event, bool]:
    """
    Returns (event, full_view). Managers and organizers get the full view;
    everyone else only sees published events.
    """
    require_actor(actor, Action.VIEW_EVENTS)
    event = _get_event(event_id)
    if can_manage(actor, event):
        return event, True
    if not event.published:
        raise NotFound("Event not found")
    return event, False


def list_events(actor: Account, args, *, now: datetime | None = None) -> tuple[int, list[Event]]:
    """
    Filters: name, location, started, ended, showFull, published (managers
    only), orderBy, page, limit. Non-managers only see published events.
    """
    require_actor(actor, Action.VIEW_EVENTS)
    now = now or utcnow()
    page, limit = parse_pagination(args)

    q = db.session.query(Event)
    name = args.get("name")
    if name:
        q = q.filter(Event.name.ilike(f"%{name}%"))
    location = args.get("location")
    if location:
        q = q.filter(Event.location.ilike(f"%{location}%"))

    started = parse_bool_arg(args.get("started"), "started")
    ended = parse_bool_arg(args.get("ended"), "ended")
    if started is not None and ended is not None:
        raise ValidationError("started and ended cannot both be specified")
    if started is not None:
        q = q.filter(Event.start_time <= now) if started else q.filter(Event.start_time > now)
    if ended is not None:
        q = q.filter(Event.end_time <= now) if ended else q.filter(Event.end_time > now)

    if has_role(actor.role_enum, Role.MANAGER):
        published = parse_bool_arg(args.get("published"), "published")
        if published is not None:
            q = q.filter(Event.published.is_(published))
    else:
        q = q.filter(Event.published.is_(True))

    order_by = parse_order_by(args.get("orderBy"), EVENT_ORDER_FIELDS, "startTime")
    events = q.order_by(_ORDER_COLUMNS[order_by], Event.id).all()

    show_full = parse_bool_arg(args.get("showFull"), "showFull")
    if not show_full:
        events = [event for event in events if not event.is_full]

    offset = (page - 1) * limit
    return len(events), events[offset:offset + limit]


def list_organized_events(actor: Account) -> list[Event]:
    return (
        db.session.query(Event)
        .join(EventOrganizer, EventOrganizer.event_id == Event.id)
        .filter(EventOrganizer.account_id == actor.id)
        .order_by(Event.start_time, Event.id)
        .all()
    )


def update_event(actor: Account, event_id: int, data: dict, *, now: datetime | None = None) -> Event:
    event = _get_event(event_id)
    require_actor(actor, Action.EDIT_EVENT, organizes_event=is_organizer(actor, event))
    now = now or utcnow()
    is_manager = has_role(actor.role_enum, Role.MANAGER)

    updates = {}
    for field, attr in (("name", "name"), ("description", "description"), ("location", "location")):
        if data.get(field) is not None:
            updates[attr] = _parse_text(data[field], field)
    if data.get("startTime") is not None:
        updates["start_time"] = require_datetime(data["startTime"], "startTime")
        if updates["start_time"] < now:
            raise ValidationError("startTime must not be in the past")
    if data.get("endTime") is not None:
        updates["end_time"] = require_datetime(data["endTime"], "endTime")
        if updates["end_time"] < now:
            raise ValidationError("endTime must not be in the past")
    if "capacity" in data:
        updates["capacity"] = _parse_capacity(data["capacity"])

    points = None
    if data.get("points") is not None:
        if not is_manager:
            raise AuthorizationError("Only managers can change event points")
        points = require_int(data["points"], "points", positive=True)

    publish = None
    if data.get("published") is not None:
        if not is_manager:
            raise AuthorizationError("Only managers can publish events")
        if data["published"] is not True:
            raise ValidationError("published can only be set to true")
        publish = True

    start_time = updates.get("start_time", event.start_time)
    end_time = updates.get("end_time", event.end_time)
    if end_time <= start_time:
        raise ValidationError("endTime must be after startTime")

    if event.start_time <= now:
        frozen = sorted(key for key in updates if key in _FROZEN_AFTER_START)
        if frozen:
            raise ValidationError("Cannot update these fields after the event has started", fields=frozen)
    if "end_time" in updates and event.end_time <= now:
        raise ValidationError("Cannot update endTime after the event has ended")

    def _op():
        locked = _lock_event(event_id)
        if "capacity" in updates and updates["capacity"] is not None:
            if updates["capacity"] < locked.num_guests:
                raise ValidationError("capacity cannot be below the current number of guests")
        if points is not None:
            if points < locked.points_awarded:
                raise ValidationError("points cannot be below the points already awarded")
            locked.points_total = points
            locked.points_remain = points - locked.points_awarded
        for key, value in updates.items():
            setattr(locked, key, value)
        if publish:
            locked.published = True
        return locked

    return run_atomic(_op)


def delete_event(actor: Account, event_id: int) -> None:
    require_actor(actor, Action.MANAGE_EVENTS)
    event = _get_event(event_id)
    if event.published:
        raise ValidationError("Cannot delete a published event")
    if event.points_awarded:
        raise ValidationError("Cannot delete an event that has awarded points")

    def _op():
        db.session.delete(event)

    run_atomic(_op)


# =============================================================================
# ORGANIZERS
# =============================================================================

def add_organizer(actor: Account, event_id: int, utorid, *, now: datetime | None = None) -> Event:
    require_actor(actor, Action.MANAGE_ORGANIZERS)
    now = now or utcnow()
    event = _get_event(event_id)
    if event.end_time <= now:
        raise EventEnded()
    account = _account_by_utorid(utorid)
    account_id = account.id

    def _op():
        locked = _lock_event(event_id)
        if account_id in locked.guest_ids:
            raise ValidationError("User is a guest of this event; remove them as guest first")
        if account_id not in locked.organizer_ids:
            db.session.add(EventOrganizer(event_id=locked.id, account_id=account_id))
            _touch(locked)
        db.session.flush()
        return locked

    return run_atomic(_op)


def remove_organizer(actor: Account, event_id: int, account_id: int) -> None:
    require_actor(actor, Action.MANAGE_ORGANIZERS)
    _get_event(event_id)

    def _op():
        link = db.session.query(EventOrganizer).filter_by(event_id=event_id, account_id=account_id).first()
        if link is None:
            raise NotFound("Organizer not found")
        db.session.delete(link)

    run_atomic(_op)


# =============================================================================
# GUESTS
# =============================================================================

def _admit(event_id: int, account_id: int, now: datetime) -> Event:
    """Add a guest under the capacity rule. Runs inside run_atomic."""
    locked = _lock_event(event_id)
    if locked.end_time <= now:
        raise EventEnded()
    if account_id in locked.organizer_ids:
        raise ValidationError("User is an organizer of this event")
    if account_id in locked.guest_ids:
        raise ValidationError("User is already a guest of this event")
    if locked.is_full:
        raise CapacityExceeded()
    locked.guest_links.append(EventGuest(account_id=account_id, joined_at=now))
    _touch(locked)
    db.session.flush()
    return locked


def _release(event_id: int, account_id: int, now: datetime) -> None:
    locked = _lock_event(event_id)
    if locked.end_time <= now:
        raise EventEnded()
    link = next((g for g in locked.guest_links if g.account_id == account_id), None)
    if link is None:
        raise NotFound("Guest not found")
    locked.guest_links.remove(link)
    _touch(locked)
    db.session.flush()


def add_guest(actor: Account, event_id: int, utorid, *, now: datetime | None = None) -> tuple[Event, Account]:
    event = _get_event(event_id)
    require_actor(actor, Action.MANAGE_EVENT_GUESTS, organizes_event=is_organizer(actor, event))
    now = now or utcnow()
    account = _account_by_utorid(utorid)
    account_id = account.id
    locked = run_atomic(lambda: _admit(event_id, account_id, now))
    return locked, account


def remove_guest(actor: Account, event_id: int, account_id: int, *, now: datetime | None = None) -> None:
    event = _get_event(event_id)
    require_actor(actor, Action.MANAGE_EVENT_GUESTS, organizes_event=is_organizer(actor, event))
    now = now or utcnow()
    run_atomic(lambda: _release(event_id, account_id, now))


def rsvp(actor: Account, event_id: int, *, now: datetime | None = None) -> Event:
    """Self RSVP; only published events accept it."""
    require_actor(actor, Action.RSVP_EVENT)
    event = _get_event(event_id)
    if not event.published:
        raise NotFound("Event not found")
    now = now or utcnow()
    actor_id = actor.id
    return run_atomic(lambda: _admit(event_id, actor_id, now))


def cancel_rsvp(actor: Account, event_id: int, *, now: datetime | None = None) -> None:
    require_actor(actor, Action.RSVP_EVENT)
    _get_event(event_id)
    now = now or utcnow()
    actor_id = actor.id
    run_atomic(lambda: _release(event_id, actor_id, now))

