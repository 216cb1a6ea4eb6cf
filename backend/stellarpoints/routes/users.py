# Overview: Flask API routes for accounts, self-service and account-scoped transactions.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import PointsError, ValidationError
from ..permissions import Action, Role, Target, has_role, require_actor
from ..responses import error_response, internal_error, paginated
from ..services import account_service, auth_service, ledger_service, promotions_service
from ..time_utils import to_utc_z


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _promotion_summaries(account_id: int) -> list[dict]:
    return [
        {
            "id": p.id,
            "name": p.name,
            "minSpending": float(p.min_spending) if p.min_spending is not None else None,
            "rate": float(p.rate) if p.rate is not None else None,
            "points": p.points or 0,
        }
        for p in promotions_service.available_onetime_promotions(account_id)
    ]


def _self_view(account) -> dict:
    data = account.to_dict()
    data["spendable"] = ledger_service.spendable_balance(account)
    data["promotions"] = _promotion_summaries(account.id)
    return data


def _transfer_view(sent, received) -> dict:
    return {
        "id": sent.id,
        "sender": sent.account.utorid,
        "recipient": received.account.utorid,
        "type": sent.type,
        "sent": received.amount,
        "relatedId": sent.related_id,
        "remark": sent.remark,
        "createdBy": sent.created_by.utorid,
    }


# =============================================================================
# ACCOUNTS
# =============================================================================

@users_bp.post("")
@require_auth
@require_role(Role.CASHIER)
def create_user_route():
    """
    Register a user. The response carries a one-time onboarding token; the
    user activates the account through POST /api/auth/resets/<token>.
    """
    try:
        data = request.get_json(silent=True) or {}
        account, token, expires_at = account_service.create_account(
            g.current_user,
            data.get("utorid"),
            data.get("name"),
            data.get("email"),
        )
        current_app.logger.info("%s registered %s", g.current_user.utorid, account.utorid)
        return jsonify({
            "id": account.id,
            "utorid": account.utorid,
            "name": account.name,
            "email": account.email,
            "verified": account.verified,
            "expiresAt": to_utc_z(expires_at),
            "resetToken": token,
        }), 201

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create user")


@users_bp.post("/public")
def signup_route():
    try:
        data = request.get_json(silent=True) or {}
        account = account_service.signup(
            data.get("utorid"),
            data.get("name"),
            data.get("email"),
            data.get("password"),
        )
        return jsonify(account.to_dict()), 201

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to sign up user")


@users_bp.get("")
@require_auth
@require_role(Role.MANAGER)
def list_users_route():
    try:
        count, rows = account_service.list_accounts(g.current_user, request.args)
        return paginated(count, [a.to_dict() for a in rows])

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list users")


@users_bp.get("/me")
@require_auth
def get_me_route():
    try:
        account = g.session_context.refresh_profile()
        require_actor(account, Action.VIEW_OWN_PROFILE, Target(owner_id=account.id))
        return jsonify(_self_view(account)), 200
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load profile")


@users_bp.patch("/me")
@require_auth
def update_me_route():
    try:
        data = request.get_json(silent=True) or {}
        account = account_service.update_profile(g.current_user, data)
        return jsonify(_self_view(account)), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update profile")


@users_bp.patch("/me/password")
@require_auth
def change_password_route():
    try:
        data = request.get_json(silent=True) or {}
        auth_service.change_password(g.current_user, data.get("old"), data.get("new"))
        return jsonify({"message": "Password updated"}), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to change password")


@users_bp.get("/<int:user_id>")
@require_auth
@require_role(Role.CASHIER)
def get_user_route(user_id: int):
    """Managers get the full profile; cashiers the fields needed at the till."""
    try:
        account = account_service.get_account(g.current_user, user_id)
        if has_role(g.session_context.role, Role.MANAGER):
            data = account.to_dict()
        else:
            data = {
                "id": account.id,
                "utorid": account.utorid,
                "name": account.name,
                "points": account.points,
                "verified": account.verified,
            }
        data["promotions"] = _promotion_summaries(account.id)
        return jsonify(data), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load user")


@users_bp.patch("/<int:user_id>")
@require_auth
@require_role(Role.MANAGER)
def update_user_route(user_id: int):
    """Request body may contain email, verified, suspicious, role."""
    try:
        data = request.get_json(silent=True) or {}
        account, changed = account_service.update_account(g.current_user, user_id, data)
        body = {"id": account.id, "utorid": account.utorid, "name": account.name}
        full = account.to_dict()
        for field in changed:
            body[field] = full[field]
        current_app.logger.info("%s updated %s: %s", g.current_user.utorid, account.utorid, ", ".join(changed))
        return jsonify(body), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update user")


@users_bp.post("/<int:user_id>/verify")
@require_auth
@require_role(Role.CASHIER)
def verify_user_route(user_id: int):
    try:
        account = account_service.verify_account(g.current_user, user_id)
        return jsonify({"id": account.id, "utorid": account.utorid, "verified": account.verified}), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to verify user")


# =============================================================================
# ACCOUNT-SCOPED TRANSACTIONS
# =============================================================================

@users_bp.post("/me/transactions")
@require_auth
def request_redemption_route():
    """Request body: {"type": "redemption", "amount": 500, "remark": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("type", "redemption") != "redemption":
            raise ValidationError("type must be redemption")
        tx = ledger_service.create_redemption(g.current_user, data.get("amount"), data.get("remark"))
        current_app.logger.info("%s requested redemption %s of %s", g.current_user.utorid, tx.id, tx.redeemed)
        return jsonify(tx.to_dict()), 201

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create redemption")


@users_bp.post("/me/transactions/transfer")
@require_auth
def transfer_by_utorid_route():
    """Request body: {"utorid": "recipient", "amount": 10, "remark": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        recipient = data.get("utorid")
        if not isinstance(recipient, str):
            raise ValidationError("utorid is required")
        sent, received = ledger_service.create_transfer(
            g.current_user, recipient, data.get("amount"), data.get("remark")
        )
        current_app.logger.info(
            "Transfer %s/%s: %s -> %s (%s)",
            sent.id, received.id, g.current_user.utorid, received.account.utorid, received.amount,
        )
        return jsonify(_transfer_view(sent, received)), 201

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create transfer")


@users_bp.post("/<int:user_id>/transactions")
@require_auth
def transfer_by_id_route(user_id: int):
    """Request body: {"type": "transfer", "amount": 10, "remark": "..."}"""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("type", "transfer") != "transfer":
            raise ValidationError("type must be transfer")
        sent, received = ledger_service.create_transfer(
            g.current_user, user_id, data.get("amount"), data.get("remark")
        )
        current_app.logger.info(
            "Transfer %s/%s: %s -> %s (%s)",
            sent.id, received.id, g.current_user.utorid, received.account.utorid, received.amount,
        )
        return jsonify(_transfer_view(sent, received)), 201

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create transfer")


@users_bp.get("/me/transactions")
@require_auth
def list_my_transactions_route():
    try:
        count, rows = ledger_service.list_own_transactions(g.current_user, request.args)
        return paginated(count, [tx.to_dict() for tx in rows])

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list transactions")
