# Overview: Flask API routes for coupons; parses input and returns JSON responses.

# backend/fitledger/routes/coupons.py
from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ServiceError, error_response
from ..services import coupon_service
from ..decorators import require_auth, require_permission
from ..validation import coerce_int, json_body


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("")
@require_auth
@require_permission("coupons.create")
def create_coupon_route():
    """
    Request body:
    {
        "code": "SUMMER25",
        "name": "Summer sale",
        "discount_type": "PERCENTAGE", (PERCENTAGE, FLAT_AMOUNT, FREE_MONTHS, FREE_ADDON)
        "discount_value": "25",
        "valid_from": "2026-06-01T00:00:00Z",
        "valid_until": "2026-08-31T23:59:59Z",
        "max_usage_count": 100,        (optional; omitted = unlimited)
        "min_purchase_amount": "500",  (optional)
        "applicable_plans": [1, 2],    (optional; empty = all plans)
        "is_referral_coupon": false
    }
    """
    try:
        coupon = coupon_service.create_coupon(g.auth_context, json_body())
        return jsonify({"success": True, "coupon": coupon.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create coupon")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@coupons_bp.get("")
@require_auth
@require_permission("coupons.view")
def list_coupons_route():
    try:
        coupons = coupon_service.list_coupons(
            g.auth_context,
            status=request.args.get("status"),
            search=request.args.get("search"),
        )
        return jsonify({"success": True, "coupons": [c.to_dict() for c in coupons]}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list coupons")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@coupons_bp.post("/validate")
@require_auth
@require_permission("coupons.view")
def validate_coupon_route():
    """
    Request body: {"code", "plan_id"?, "amount"?}

    Always 200; an unusable coupon is reported as {"valid": false, "reason", "error"}.
    """
    try:
        data = json_body()
        validation = coupon_service.validate_coupon(
            g.auth_context,
            data.get("code"),
            plan_id=coerce_int(data.get("plan_id"), "plan_id", required=False),
            amount=data.get("amount"),
        )
        return jsonify({"success": True, **validation.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate coupon")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@coupons_bp.post("/apply")
@require_auth
@require_permission("coupons.apply")
def apply_coupon_route():
    """
    Request body: {"code", "member_id", "amount", "plan_id"?, "invoice_id"?}

    Returns:
        201: Usage recorded with discount and final amount
        400: Coupon invalid, or usage limit reached
    """
    try:
        data = json_body()
        usage = coupon_service.apply_coupon(
            g.auth_context,
            data.get("code"),
            coerce_int(data.get("member_id"), "member_id"),
            data.get("amount"),
            plan_id=coerce_int(data.get("plan_id"), "plan_id", required=False),
            invoice_id=coerce_int(data.get("invoice_id"), "invoice_id", required=False),
        )
        return jsonify({"success": True, "usage": usage.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply coupon")
        return jsonify({"success": False, "error": "Internal server error"}), 500
