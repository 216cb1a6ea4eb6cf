# Overview: Flask API routes for the points ledger; purchases, adjustments, processing and flags.

"""
Transaction API routes

- POST  /api/transactions                  purchase (cashier+) or adjustment (manager+)
- GET   /api/transactions                  managers: all; cashiers: rows they created
- GET   /api/transactions/<id>             manager+
- PATCH /api/transactions/<id>/suspicious  manager+, rebuilds the owner's balance
- PATCH /api/transactions/<id>/processed   cashier+, processes a redemption once
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import PointsError, ValidationError
from ..permissions import Role
from ..responses import error_response, internal_error, paginated
from ..services import ledger_service


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("")
@require_auth
@require_role(Role.CASHIER)
def create_transaction_route():
    """
    Request body (purchase):
    {"utorid": "...", "type": "purchase", "spent": 19.99, "promotionIds": [3], "remark": ""}

    Request body (adjustment):
    {"utorid": "...", "type": "adjustment", "amount": -40, "relatedId": 12, "remark": ""}
    """
    try:
        data = request.get_json(silent=True) or {}
        tx = ledger_service.create_transaction(g.current_user, data)

        body = tx.to_dict()
        if tx.type == "purchase":
            body["earned"] = 0 if tx.suspicious else tx.amount
        current_app.logger.info(
            "%s created %s %s for %s (amount=%s, suspicious=%s)",
            g.current_user.utorid, tx.type, tx.id, tx.account.utorid, tx.amount, tx.suspicious,
        )
        return jsonify(body), 201

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create transaction")


@transactions_bp.get("")
@require_auth
@require_role(Role.CASHIER)
def list_transactions_route():
    try:
        count, rows = ledger_service.list_transactions(g.current_user, request.args)
        return paginated(count, [tx.to_dict() for tx in rows])

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list transactions")


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_role(Role.MANAGER)
def get_transaction_route(transaction_id: int):
    try:
        tx = ledger_service.get_transaction(g.current_user, transaction_id)
        return jsonify(tx.to_dict()), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load transaction")


@transactions_bp.patch("/<int:transaction_id>/suspicious")
@require_auth
@require_role(Role.MANAGER)
def set_suspicious_route(transaction_id: int):
    """Request body: {"suspicious": true}"""
    try:
        data = request.get_json(silent=True) or {}
        tx = ledger_service.set_suspicious(g.current_user, transaction_id, data.get("suspicious"))
        current_app.logger.info(
            "%s set suspicious=%s on transaction %s", g.current_user.utorid, tx.suspicious, tx.id
        )
        return jsonify(tx.to_dict()), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update transaction")


@transactions_bp.patch("/<int:transaction_id>/processed")
@require_auth
@require_role(Role.CASHIER)
def mark_processed_route(transaction_id: int):
    """Request body: {"processed": true}"""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("processed") is not True:
            raise ValidationError("processed must be true")
        tx = ledger_service.mark_processed(g.current_user, transaction_id)
        current_app.logger.info(
            "%s processed redemption %s (%s points)", g.current_user.utorid, tx.id, tx.redeemed
        )
        return jsonify(tx.to_dict()), 200

    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to process redemption")
