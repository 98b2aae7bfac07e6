# Overview: Flask API routes for invoices and their ledger; parses input and returns JSON responses.

# backend/fitledger/routes/invoices.py
"""
Invoice & Ledger API Routes

DESIGN:
- Issue invoices from line items
- Record payments and refunds (the ledger recomputes totals)
- Cancel invoices that hold no money
- Every lookup is scoped to the caller's tenant/branch; foreign ids are 404

SECURITY:
- invoices.view / invoices.create / invoices.update
- invoices.payment for payments, invoices.refund for refunds
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ServiceError, error_response
from ..services import invoice_service, reconciliation_service
from ..decorators import require_auth, require_permission
from ..validation import coerce_date, coerce_int, json_body


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


# =============================================================================
# ISSUING
# =============================================================================

@invoices_bp.post("")
@require_auth
@require_permission("invoices.create")
def create_invoice_route():
    """
    Request body:
    {
        "member_id": 42,
        "branch_id": 3,                (optional; branch-scoped callers use their own)
        "due_date": "2026-02-01",      (optional)
        "notes": "...",                (optional)
        "items": [
            {"description": "Monthly plan", "quantity": 1, "unit_price": "1000.00", "tax_rate": "18"}
        ]
    }
    """
    try:
        data = json_body()

        invoice = invoice_service.create_invoice(
            g.auth_context,
            coerce_int(data.get("member_id"), "member_id", required=False),
            data.get("items") or [],
            branch_id=coerce_int(data.get("branch_id"), "branch_id", required=False),
            due_date=coerce_date(data.get("due_date"), "due_date", required=False),
            notes=data.get("notes"),
        )

        return jsonify({
            "success": True,
            "invoice": invoice.to_dict(),
            "items": [item.to_dict() for item in invoice.items],
        }), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@invoices_bp.get("")
@require_auth
@require_permission("invoices.view")
def list_invoices_route():
    """
    Query params:
    - status: DRAFT | PARTIALLY_PAID | PAID | REFUNDED | CANCELLED
    - member_id
    - page (default 1), per_page (default 50, max 200)
    """
    try:
        invoices, total = invoice_service.list_invoices(
            g.auth_context,
            status=request.args.get("status"),
            member_id=coerce_int(request.args.get("member_id"), "member_id", required=False),
            page=coerce_int(request.args.get("page"), "page", required=False) or 1,
            per_page=coerce_int(request.args.get("per_page"), "per_page", required=False) or 50,
        )

        return jsonify({
            "success": True,
            "invoices": [inv.to_dict() for inv in invoices],
            "total": total,
        }), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_permission("invoices.view")
def get_invoice_route(invoice_id: int):
    """Invoice with ledger totals and full payment/refund history."""
    try:
        summary = reconciliation_service.get_invoice_summary(g.auth_context, invoice_id)
        return jsonify({"success": True, **summary}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load invoice")
        return jsonify({"success": False, "error": "Internal server error"}), 500


# =============================================================================
# LEDGER
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
@require_permission("invoices.payment")
def record_payment_route(invoice_id: int):
    """
    Request body:
    {
        "amount": "400.00",
        "method": "CASH",              (CASH, CARD, UPI, BANK_TRANSFER, CHEQUE, ONLINE)
        "transaction_ref": "...",      (optional)
        "notes": "..."                 (optional)
    }

    Returns:
        201: Payment recorded, invoice recomputed
        400: Invalid amount/method, or invoice refunded/cancelled
        404: Invoice not found in caller's scope
    """
    try:
        data = json_body()

        payment, invoice = reconciliation_service.record_payment(
            g.auth_context,
            invoice_id,
            data.get("amount"),
            data.get("method"),
            transaction_ref=data.get("transaction_ref"),
            notes=data.get("notes"),
        )

        return jsonify({
            "success": True,
            "payment": payment.to_dict(),
            "invoice": invoice.to_dict(),
        }), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/refunds")
@require_auth
@require_permission("invoices.refund")
def record_refund_route(invoice_id: int):
    """
    Request body:
    {
        "refund_amount": "200.00",
        "method": "CASH",
        "reason": "Duplicate charge",
        "notes": "..."                 (optional)
    }

    Returns:
        201: Refund recorded with credit note number
        400: Refund exceeds paid amount, or invalid input
        404: Invoice not found in caller's scope
    """
    try:
        data = json_body()

        refund, invoice = reconciliation_service.record_refund(
            g.auth_context,
            invoice_id,
            data.get("refund_amount"),
            data.get("method"),
            data.get("reason"),
            notes=data.get("notes"),
        )

        return jsonify({
            "success": True,
            "refund": refund.to_dict(),
            "invoice": invoice.to_dict(),
        }), 201

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record refund")
        return jsonify({"success": False, "error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_permission("invoices.update")
def cancel_invoice_route(invoice_id: int):
    """Request body: {"reason": "..."}"""
    try:
        data = json_body()
        invoice = invoice_service.cancel_invoice(g.auth_context, invoice_id, data.get("reason"))
        return jsonify({"success": True, "invoice": invoice.to_dict()}), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return jsonify({"success": False, "error": "Internal server error"}), 500
