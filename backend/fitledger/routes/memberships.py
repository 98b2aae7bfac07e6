# Overview: Flask API routes for membership lifecycle; parses input and returns JSON responses.

# backend/fitledger/routes/memberships.py
"""
Membership Lifecycle API Routes

Each transition returns the appended lifecycle event and the membership
as it is after the transition. Illegal transitions are 400.

SECURITY:
- memberships.create to enroll
- memberships.lifecycle for pause/resume/upgrade/cancel
- memberships.view for history
"""

from flask import Blueprint, jsonify, g, current_app

from ..errors import ServiceError, error_response
from ..services import membership_lifecycle_service as lifecycle
from ..decorators import require_auth, require_permission
from ..validation import coerce_date, coerce_int, json_body


memberships_bp = Blueprint("memberships", __name__, url_prefix="/api/memberships")


def _transition_response(event, membership, status_code=200):
    return jsonify({
        "success": True,
        "event": event.to_dict(),
        "membership": membership.to_dict(),
    }), status_code


@memberships_bp.post("")
@require_auth
@require_permission("memberships.create")
def create_membership_route():
    """
    Request body:
    {
        "member_id": 42,
        "plan_id": 7,
        "start_date": "2026-01-01",
        "branch_id": 3                 (optional)
    }
    """
    try:
        data = json_body()

        membership = lifecycle.create_membership(
            g.auth_context,
            coerce_int(data.get("member_id"), "member_id"),
            coerce_int(data.get("plan_id"), "plan_id"),
            coerce_date(data.get("start_date"), "start_date"),
            branch_id=coerce_int(data.get("branch_id"), "branch_id", required=False),
        )

        return jsonify({"success": True, "membership": membership.to_dict()}), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create membership")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@memberships_bp.post("/<int:membership_id>/pause")
@require_auth
@require_permission("memberships.lifecycle")
def pause_membership_route(membership_id: int):
    """Request body: {"effective_date", "duration_days", "reason", "notes"?}"""
    try:
        data = json_body()

        event, membership = lifecycle.pause_membership(
            g.auth_context,
            membership_id,
            coerce_date(data.get("effective_date"), "effective_date"),
            coerce_int(data.get("duration_days"), "duration_days"),
            data.get("reason"),
            data.get("notes"),
        )
        return _transition_response(event, membership)

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to pause membership")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@memberships_bp.post("/<int:membership_id>/resume")
@require_auth
@require_permission("memberships.lifecycle")
def resume_membership_route(membership_id: int):
    """Request body: {"effective_date", "notes"?}"""
    try:
        data = json_body()

        event, membership = lifecycle.resume_membership(
            g.auth_context,
            membership_id,
            coerce_date(data.get("effective_date"), "effective_date"),
            data.get("notes"),
        )
        return _transition_response(event, membership)

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to resume membership")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@memberships_bp.post("/<int:membership_id>/upgrade")
@require_auth
@require_permission("memberships.lifecycle")
def upgrade_membership_route(membership_id: int):
    """
    Request body:
    {
        "new_plan_id": 9,
        "effective_date": "2026-03-01",
        "pro_rata_credit": "150.00",   (optional; recorded as given)
        "notes": "..."                 (optional)
    }
    """
    try:
        data = json_body()

        policy = None
        if data.get("pro_rata_credit") is not None:
            policy = lifecycle.CallerSuppliedCredit(data["pro_rata_credit"])

        event, membership = lifecycle.upgrade_membership(
            g.auth_context,
            membership_id,
            coerce_int(data.get("new_plan_id"), "new_plan_id"),
            coerce_date(data.get("effective_date"), "effective_date"),
            proration_policy=policy,
            notes=data.get("notes"),
        )
        return _transition_response(event, membership)

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upgrade membership")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@memberships_bp.post("/<int:membership_id>/cancel")
@require_auth
@require_permission("memberships.lifecycle")
def cancel_membership_route(membership_id: int):
    """Request body: {"effective_date", "reason", "refund_amount"?, "notes"?}"""
    try:
        data = json_body()

        event, membership = lifecycle.cancel_membership(
            g.auth_context,
            membership_id,
            coerce_date(data.get("effective_date"), "effective_date"),
            data.get("reason"),
            data.get("refund_amount"),
            data.get("notes"),
        )
        return _transition_response(event, membership)

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel membership")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@memberships_bp.get("/<int:membership_id>/history")
@require_auth
@require_permission("memberships.view")
def lifecycle_history_route(membership_id: int):
    try:
        events = lifecycle.get_lifecycle_history(g.auth_context, membership_id)
        return jsonify({"success": True, "events": [e.to_dict() for e in events]}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load lifecycle history")
        return jsonify({"success": False, "error": "Internal server error"}), 500
