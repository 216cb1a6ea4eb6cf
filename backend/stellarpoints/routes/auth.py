# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- POST /api/auth/tokens          login, returns a bearer token
- POST /api/auth/logout          revoke the current session
- POST /api/auth/resets          request a password-reset token
- POST /api/auth/resets/<token>  complete a reset (or first-time onboarding)
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import bearer_token, require_auth
from ..errors import PointsError
from ..responses import error_response, internal_error
from ..services import auth_service, session_service
from ..time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/tokens")
def login_route():
    """
    Authenticate and create a session token.

    Request body: {"utorid": "...", "password": "..."}
    Returns 200 {"token", "expiresAt"}; 401 on bad credentials.
    """
    try:
        data = request.get_json(silent=True) or {}
        account = auth_service.authenticate(data.get("utorid"), data.get("password"))

        session, token = session_service.create_session(
            account.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        current_app.logger.info("Login succeeded for %s", account.utorid)
        return jsonify({"token": token, "expiresAt": to_utc_z(session.expires_at)}), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to login user")


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(bearer_token(), reason="Logout")
        current_app.logger.info("Logout for %s", g.current_user.utorid)
        return jsonify({"message": "Logged out"}), 200
    except Exception:
        return internal_error("Failed to logout user")


@auth_bp.post("/resets")
def request_reset_route():
    """
    Request a password reset.

    Rate limited per client IP (RESET_RATE_LIMIT_SECONDS). The token would
    normally be mailed; it is returned in the response body instead.
    """
    try:
        data = request.get_json(silent=True) or {}
        token, expires_at = auth_service.request_password_reset(data.get("utorid"), request.remote_addr)
        return jsonify({"resetToken": token, "expiresAt": to_utc_z(expires_at)}), 202

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to issue reset token")


@auth_bp.post("/resets/<reset_token>")
def complete_reset_route(reset_token: str):
    """
    Set a new password with a reset token.

    Request body: {"utorid": "...", "password": "..."}
    Returns 200; 404 unknown token; 410 expired token.
    """
    try:
        data = request.get_json(silent=True) or {}
        account = auth_service.complete_password_reset(reset_token, data.get("utorid"), data.get("password"))
        session_service.revoke_all_sessions(account.id, "Password reset")
        current_app.logger.info("Password reset completed for %s", account.utorid)
        return jsonify({"message": "Password has been reset"}), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reset password")
