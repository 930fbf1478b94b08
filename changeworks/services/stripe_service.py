"""Stripe service — webhook verification and event dispatch.

Responsible for:
- Checking that Stripe credentials are configured
- Verifying webhook signatures
- Dispatching each event type to exactly one handler
- Recording every verified event in the stripe_events ledger

Handlers commit their own writes. A handler that raises is rolled back
and logged; the event is still acknowledged so Stripe stops retrying.
"""

import logging
from datetime import datetime, timezone

import stripe
from flask import current_app

from changeworks.extensions import db
from changeworks.models.stripe_event import StripeEvent
from changeworks.services.stripe_objects import to_dict
from changeworks.services.subscription_service import (
    handle_subscription_created,
    handle_subscription_deleted,
    handle_subscription_updated,
)
from changeworks.services.transaction_service import (
    handle_invoice_created,
    handle_invoice_payment_failed,
    handle_invoice_payment_succeeded,
    handle_payment_intent_canceled,
    handle_payment_intent_failed,
    handle_payment_intent_processing,
    handle_payment_intent_succeeded,
)

logger = logging.getLogger(__name__)

EVENT_HANDLERS = {
    "payment_intent.succeeded": handle_payment_intent_succeeded,
    "payment_intent.payment_failed": handle_payment_intent_failed,
    "payment_intent.canceled": handle_payment_intent_canceled,
    "payment_intent.processing": handle_payment_intent_processing,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "invoice.created": handle_invoice_created,
}


def missing_stripe_config():
    """Names of the Stripe settings that are not configured."""
    return [
        name for name in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")
        if not current_app.config.get(name)
    ]


def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Returns the verified event as a plain dict.
    Raises stripe.SignatureVerificationError on invalid signature and
    ValueError on an unparseable payload.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    return to_dict(event)


def _record_event(event_id, event_type, status, error_message=None):
    record = StripeEvent.query.filter_by(stripe_event_id=event_id).first()
    if record:
        record.status = status
        record.error_message = error_message
        record.delivery_count = (record.delivery_count or 0) + 1
        record.processed_at = datetime.now(timezone.utc)
    else:
        db.session.add(StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            status=status,
            error_message=error_message,
        ))
    db.session.commit()


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    With STRIPE_DEDUPE_EVENTS on, an event already recorded as processed
    is skipped. Otherwise every delivery is applied.

    Returns (success: bool, message: str). success is False only when the
    handler raised.
    """
    event_id = event["id"]
    event_type = event["type"]

    existing = StripeEvent.query.filter_by(stripe_event_id=event_id).first()
    if existing and existing.status == "processed":
        if current_app.config.get("STRIPE_DEDUPE_EVENTS"):
            logger.info(f"Duplicate webhook event {event_id}, skipping")
            existing.delivery_count = (existing.delivery_count or 0) + 1
            db.session.commit()
            return True, "already_processed"
        logger.warning(
            f"Webhook event {event_id} ({event_type}) delivered again, re-applying"
        )

    handler = EVENT_HANDLERS.get(event_type)
    error_message = None
    if handler is None:
        logger.info(f"Unhandled event type {event_type}")
        status = "ignored"
    else:
        logger.info(f"Processing {event_type} ({event_id})")
        try:
            handler(to_dict(event["data"]["object"]))
            status = "processed"
        except Exception as e:
            logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
            db.session.rollback()
            status = "failed"
            error_message = str(e)

    try:
        _record_event(event_id, event_type, status, error_message)
    except Exception as e:
        logger.error(f"Failed to record webhook event {event_id}: {e}")
        db.session.rollback()

    return status != "failed", status
