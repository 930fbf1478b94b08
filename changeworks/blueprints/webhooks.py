"""Webhooks blueprint — /api/payments/webhook

Receives Stripe webhook events. Raw body is required for signature
verification.
"""

import logging

from flask import Blueprint, request, jsonify

from changeworks.services.stripe_service import (
    handle_webhook_event,
    missing_stripe_config,
    verify_webhook_signature,
)

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/payments")


@webhooks_bp.route("/webhook", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. 503 if Stripe credentials are not configured
    2. 400 if the Stripe-Signature header is missing or invalid
    3. Dispatch to the event handler (errors are logged, not surfaced)
    4. Return 200 {"received": true} so Stripe stops retrying
    """
    try:
        missing = missing_stripe_config()
        if missing:
            logger.error(f"Webhook cannot be processed, missing config: {', '.join(missing)}")
            return jsonify({"error": "Payment service not available"}), 503

        payload = request.get_data(as_text=True)
        sig_header = request.headers.get("Stripe-Signature")

        if not sig_header:
            logger.warning("Webhook received without Stripe-Signature header")
            return jsonify({"error": "Missing signature"}), 400

        # --- Verify signature ---
        try:
            event = verify_webhook_signature(payload, sig_header)
        except Exception as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            return jsonify({"error": "Webhook signature verification failed"}), 400

        # --- Dispatch ---
        success, message = handle_webhook_event(event)
        if not success:
            logger.error(f"Webhook {event.get('id')} handler failed, acknowledged anyway")

        return jsonify({"received": True}), 200

    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return jsonify({"error": "Webhook handler failed"}), 500
