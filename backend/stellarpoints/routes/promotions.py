from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import PointsError
from ..permissions import Role
from ..responses import error_response, internal_error, paginated
from ..services import promotions_service

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


@promotions_bp.route("", methods=["POST"])
@require_auth
@require_role(Role.MANAGER)
def create_promotion():
    try:
        data = request.get_json(silent=True) or {}
        promotion = promotions_service.create_promotion(g.current_user, data)
        current_app.logger.info("%s created promotion %s", g.current_user.utorid, promotion.id)
        return jsonify(promotion.to_dict()), 201
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create promotion")


@promotions_bp.route("", methods=["GET"])
@require_auth
def list_promotions():
    try:
        count, rows = promotions_service.list_promotions(g.current_user, request.args)
        return paginated(count, [p.to_dict() for p in rows])
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list promotions")


@promotions_bp.route("/<int:promotion_id>", methods=["GET"])
@require_auth
def get_promotion(promotion_id: int):
    try:
        promotion = promotions_service.get_promotion(g.current_user, promotion_id)
        return jsonify(promotion.to_dict())
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load promotion")


@promotions_bp.route("/<int:promotion_id>", methods=["PATCH"])
@require_auth
@require_role(Role.MANAGER)
def update_promotion(promotion_id: int):
    try:
        data = request.get_json(silent=True) or {}
        promotion = promotions_service.update_promotion(g.current_user, promotion_id, data)
        return jsonify(promotion.to_dict())
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update promotion")


@promotions_bp.route("/<int:promotion_id>", methods=["DELETE"])
@require_auth
@require_role(Role.MANAGER)
def delete_promotion(promotion_id: int):
    try:
        promotions_service.delete_promotion(g.current_user, promotion_id)
        return "", 204
    except PointsError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete promotion")
