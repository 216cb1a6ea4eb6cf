# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request

from .permissions import Role, has_role
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, "session_context")


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets:
    - g.current_user: the authenticated Account
    - g.session_context: the full SessionContext (role, capabilities, session)

    Returns 401 for a missing, unknown, expired or idle token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required", "code": "AuthenticationError", "retryable": False}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token", "code": "AuthenticationError", "retryable": False}), 401

        g.current_user = context.account
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(minimum: Role):
    """
    Require the caller's role rank to be at least `minimum`.

    Per-resource rules (ownership, event organizers, role grants) are
    checked again in the services; this only rejects the obvious cases
    before any input is parsed.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required", "code": "AuthenticationError", "retryable": False}), 401

            context = g.session_context
            if not has_role(context.role, minimum):
                current_app.logger.warning(
                    "Denied %s %s for %s (%s): requires %s",
                    request.method,
                    request.path,
                    context.account.utorid,
                    context.role.label,
                    minimum.label,
                )
                return jsonify({
                    "error": f"Forbidden: requires {minimum.label} or higher",
                    "code": "AuthorizationError",
                    "retryable": False,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
