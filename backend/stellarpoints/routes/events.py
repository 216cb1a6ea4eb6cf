# Overview: Flask API routes for events; CRUD, organizers, guests and point awards.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import PointsError
from ..permissions import Role
from ..responses import error_response, internal_error, paginated
from ..services import event_service, ledger_service


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


def _full_view(event) -> dict:
    data = event.to_dict()
    data["organizers"] = [link.account.to_summary() for link in event.organizer_links]
    data["guests"] = [link.account.to_summary() for link in event.guest_links]
    return data


def _public_view(event) -> dict:
    data = event.to_summary()
    data["description"] = event.description
    data["organizers"] = [link.account.to_summary() for link in event.organizer_links]
    return data


# =============================================================================
# EVENTS
# =============================================================================

@events_bp.post("")
@require_auth
@require_role(Role.MANAGER)
def create_event_route():
    """
    Request body:
    {"name", "description", "location", "startTime", "endTime", "capacity" (optional), "points"}
    """
    try:
        data = request.get_json(silent=True) or {}
        event = event_service.create_event(g.current_user, data)
        current_app.logger.info("%s created event %s", g.current_user.utorid, event.id)
        return jsonify(_full_view(event)), 201
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create event")


@events_bp.get("")
@require_auth
def list_events_route():
    try:
        count, rows = event_service.list_events(g.current_user, request.args)
        if g.session_context.role >= Role.MANAGER:
            results = [e.to_dict() for e in rows]
        else:
            results = [e.to_summary() for e in rows]
        return paginated(count, results)
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list events")


@events_bp.get("/mine")
@require_auth
def list_my_events_route():
    try:
        events = event_service.list_organized_events(g.current_user)
        return jsonify([e.to_dict() for e in events])
    except Exception:
        return internal_error("Failed to list organized events")


@events_bp.get("/<int:event_id>")
@require_auth
def get_event_route(event_id: int):
    try:
        event, full = event_service.get_event(g.current_user, event_id)
        return jsonify(_full_view(event) if full else _public_view(event))
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load event")


@events_bp.patch("/<int:event_id>")
@require_auth
def update_event_route(event_id: int):
    try:
        data = request.get_json(silent=True) or {}
        event = event_service.update_event(g.current_user, event_id, data)
        return jsonify(_full_view(event))
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update event")


@events_bp.delete("/<int:event_id>")
@require_auth
@require_role(Role.MANAGER)
def delete_event_route(event_id: int):
    try:
        event_service.delete_event(g.current_user, event_id)
        return "", 204
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete event")


# =============================================================================
# ORGANIZERS
# =============================================================================

@events_bp.post("/<int:event_id>/organizers")
@require_auth
@require_role(Role.MANAGER)
def add_organizer_route(event_id: int):
    """Request body: {"utorid": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        event = event_service.add_organizer(g.current_user, event_id, data.get("utorid"))
        return jsonify({
            "id": event.id,
            "name": event.name,
            "location": event.location,
            "organizers": [link.account.to_summary() for link in event.organizer_links],
        }), 201
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to add organizer")


@events_bp.delete("/<int:event_id>/organizers/<int:user_id>")
@require_auth
@require_role(Role.MANAGER)
def remove_organizer_route(event_id: int, user_id: int):
    try:
        event_service.remove_organizer(g.current_user, event_id, user_id)
        return "", 204
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to remove organizer")


# =============================================================================
# GUESTS
# =============================================================================

@events_bp.post("/<int:event_id>/guests")
@require_auth
def add_guest_route(event_id: int):
    """Managers or the event's organizers. Request body: {"utorid": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        event, account = event_service.add_guest(g.current_user, event_id, data.get("utorid"))
        return jsonify({
            "id": event.id,
            "name": event.name,
            "location": event.location,
            "guestAdded": account.to_summary(),
            "numGuests": event.num_guests,
        }), 201
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to add guest")


@events_bp.post("/<int:event_id>/guests/me")
@require_auth
def rsvp_route(event_id: int):
    try:
        event = event_service.rsvp(g.current_user, event_id)
        return jsonify({
            "id": event.id,
            "name": event.name,
            "location": event.location,
            "guestAdded": g.current_user.to_summary(),
            "numGuests": event.num_guests,
        }), 201
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to RSVP")


@events_bp.delete("/<int:event_id>/guests/me")
@require_auth
def cancel_rsvp_route(event_id: int):
    try:
        event_service.cancel_rsvp(g.current_user, event_id)
        return "", 204
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to cancel RSVP")


@events_bp.delete("/<int:event_id>/guests/<int:user_id>")
@require_auth
def remove_guest_route(event_id: int, user_id: int):
    try:
        event_service.remove_guest(g.current_user, event_id, user_id)
        return "", 204
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to remove guest")


# =============================================================================
# AWARDS
# =============================================================================

@events_bp.post("/<int:event_id>/transactions")
@require_auth
def award_points_route(event_id: int):
    """
    Request body: {"type": "event", "utorid": "..." (optional), "amount": 50, "remark": ""}

    Without utorid every current guest receives `amount`.
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("type", "event") != "event":
            return jsonify({"error": "type must be event", "code": "ValidationError", "retryable": False}), 400
        awarded = ledger_service.award_event_points(
            g.current_user,
            event_id,
            data.get("amount"),
            utorid=data.get("utorid"),
            remark=data.get("remark"),
        )
        current_app.logger.info(
            "%s awarded %s points to %s guest(s) of event %s",
            g.current_user.utorid, data.get("amount"), len(awarded), event_id,
        )
        results = [
            {
                "id": tx.id,
                "recipient": tx.account.utorid,
                "awarded": tx.amount,
                "type": tx.type,
                "relatedId": tx.event_id,
                "remark": tx.remark,
                "createdBy": tx.created_by.utorid,
            }
            for tx in awarded
        ]
        if data.get("utorid") is not None:
            return jsonify(results[0]), 201
        return jsonify(results), 201
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to award points")
