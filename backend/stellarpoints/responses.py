# Overview: JSON response helpers shared by the blueprints.

from flask import current_app, g, jsonify, request

from .errors import AuthorizationError, PointsError
from .extensions import db


def error_response(err: PointsError):
    """Roll back the request's session and render a taxonomy error."""
    db.session.rollback()
    if isinstance(err, AuthorizationError):
        actor = getattr(g, "current_user", None)
        current_app.logger.warning(
            "Denied %s %s for %s: %s",
            request.method,
            request.path,
            actor.utorid if actor is not None else "anonymous",
            err.message,
        )
    return jsonify(err.to_dict()), err.status_code


def internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "InternalError", "retryable": False}), 500


def paginated(count: int, results: list):
    return jsonify({"count": count, "results": results})
