# Overview: Flask API route for payment-gateway callbacks; no user session, signature-verified.

# backend/fitledger/routes/webhooks.py
"""
Payment Gateway Webhook Route

SECURITY:
- No require_auth: the gateway is not a user. Authenticity comes from the
  HMAC signature header, checked by webhook_service before anything is applied
- The raw body is verified byte-for-byte; never re-serialize it first
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import ServiceError, error_response
from ..services import webhook_service


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

SIGNATURE_HEADERS = ("stripe-signature", "x-webhook-signature")


@webhooks_bp.post("/payment")
def payment_webhook_route():
    """
    Receive a payment gateway notification.

    Returns:
        200: Processed, duplicate, or business error reported in-band
        400: Body is not a JSON object
        401: Missing or invalid signature
        500: Unexpected failure (event kept for replay)
    """
    signature = None
    for header in SIGNATURE_HEADERS:
        signature = request.headers.get(header)
        if signature:
            break

    try:
        result = webhook_service.process_webhook(request.get_data(as_text=True), signature)
        return jsonify(result.to_dict()), 200

    except ServiceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Webhook processing failed")
        return jsonify({"success": False, "error": "Webhook processing failed"}), 500
