"""Transaction service — invoice and PaymentIntent webhooks.

Responsible for:
- Upserting subscription_transactions rows from invoice.* webhooks
- Moving one-time SaveTrRecord rows to their final pay_status from
  payment_intent.* webhooks
- Crediting organizations.balance on successful payments
- Triggering donor notifications once the money is recorded

The balance credit is a plain increment. Redelivering a success event
credits it again unless the dispatcher's STRIPE_DEDUPE_EVENTS is on.
"""

import json
import logging
from datetime import datetime, timezone

from changeworks.extensions import db
from changeworks.models.organization import Organization
from changeworks.models.subscription import Subscription, SubscriptionTransaction
from changeworks.models.transaction import SaveTrRecord
from changeworks.services.notification_service import (
    notify_card_failure,
    notify_monthly_impact,
)
from changeworks.services.stripe_objects import from_timestamp, minor_to_major

logger = logging.getLogger(__name__)


def increment_organization_balance(organization_id, amount):
    """Atomically add amount (major units) to an organization's balance.

    Returns True if a row was updated. Uses flush semantics only; the
    caller commits.
    """
    updated = (
        Organization.query
        .filter_by(id=organization_id)
        .update(
            {Organization.balance: Organization.balance + amount},
            synchronize_session=False,
        )
    )
    if not updated:
        logger.warning(f"Organization {organization_id} not found, balance not credited")
        return False
    logger.info(f"Updated organization {organization_id} balance by ${amount}")
    return True


# ──────────────────────────────────────────────
# Invoices (recurring donations)
# ──────────────────────────────────────────────

def _invoice_subscription_id(invoice):
    """Stripe subscription id an invoice belongs to, or None.

    Newer API versions move it to parent.subscription_details.subscription.
    """
    sub_id = invoice.get("subscription")
    if not sub_id:
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
        sub_id = details.get("subscription")
    if isinstance(sub_id, dict):  # expanded object
        sub_id = sub_id.get("id")
    return sub_id


def _resolve_subscription(invoice, event_type):
    stripe_subscription_id = _invoice_subscription_id(invoice)
    if not stripe_subscription_id:
        logger.info(f"{event_type}: invoice {invoice.get('id')} is not for a subscription, skipping")
        return None

    sub = Subscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()
    if not sub:
        logger.warning(
            f"{event_type}: subscription {stripe_subscription_id} not found "
            f"for invoice {invoice.get('id')}"
        )
    return sub


PAYMENT_STATUSES = ("paid", "failed")


def _status_applies(current, new):
    """Whether an invoice event may move a row from `current` to `new`.

    "paid" is final. A status set by a payment event is never replaced by
    an invoice.created status (draft/open), whatever the delivery order.
    """
    if current == "paid":
        return new == "paid"
    if current in PAYMENT_STATUSES:
        return new in PAYMENT_STATUSES
    return True


def upsert_invoice_transaction(subscription, invoice, status, amount):
    """Create or update the SubscriptionTransaction for an invoice.

    A row already marked "paid" keeps that status and amount: a late
    invoice.created or invoice.payment_failed must not undo a payment.
    Check txn.status afterwards to see whether `status` was applied.
    """
    txn = SubscriptionTransaction.query.filter_by(
        stripe_invoice_id=invoice["id"]
    ).first()

    if txn:
        if not _status_applies(txn.status, status):
            logger.info(
                f"Invoice {invoice['id']} already {txn.status}, ignoring status {status}"
            )
        else:
            txn.status = status
            txn.amount = amount
    else:
        txn = SubscriptionTransaction(
            subscription_id=subscription.id,
            stripe_invoice_id=invoice["id"],
            amount=amount,
            currency=invoice.get("currency") or subscription.currency,
            status=status,
            period_start=from_timestamp(invoice.get("period_start")),
            period_end=from_timestamp(invoice.get("period_end")),
        )
        db.session.add(txn)

    if invoice.get("invoice_pdf"):
        txn.invoice_url = invoice["invoice_pdf"]
        txn.pdf_url = invoice["invoice_pdf"]
    if invoice.get("hosted_invoice_url"):
        txn.hosted_invoice_url = invoice["hosted_invoice_url"]

    db.session.flush()
    return txn


def handle_invoice_payment_succeeded(invoice):
    """Handle invoice.payment_succeeded — record the payment and credit the org."""
    sub = _resolve_subscription(invoice, "invoice.payment_succeeded")
    if not sub:
        return None

    amount = minor_to_major(invoice.get("amount_paid"))
    txn = upsert_invoice_transaction(sub, invoice, "paid", amount)
    increment_organization_balance(sub.organization_id, amount)
    db.session.commit()

    notify_monthly_impact(sub.donor_id, sub.organization_id, amount)
    return txn


def handle_invoice_payment_failed(invoice):
    """Handle invoice.payment_failed — record the failed attempt and alert the donor."""
    sub = _resolve_subscription(invoice, "invoice.payment_failed")
    if not sub:
        return None

    amount = minor_to_major(invoice.get("amount_due"))
    txn = upsert_invoice_transaction(sub, invoice, "failed", amount)
    db.session.commit()

    if txn.status != "failed":
        logger.info(
            f"Invoice {invoice['id']} is {txn.status}, no card failure alert sent"
        )
        return txn

    logger.info(f"Recorded failed payment for subscription {sub.stripe_subscription_id}")
    notify_card_failure(sub.donor_id, sub.organization_id)
    return txn


def handle_invoice_created(invoice):
    """Handle invoice.created — open a transaction row for the billing cycle."""
    sub = _resolve_subscription(invoice, "invoice.created")
    if not sub:
        return None

    amount = minor_to_major(invoice.get("amount_due"))
    txn = upsert_invoice_transaction(
        sub, invoice, invoice.get("status") or "open", amount
    )
    db.session.commit()
    logger.info(f"Created transaction record for invoice {invoice['id']}")
    return txn


# ──────────────────────────────────────────────
# PaymentIntents (one-time donations)
# ──────────────────────────────────────────────

def _intent_parties(payment_intent):
    """Return (donor_id, organization_id) from intent metadata, or (None, None)."""
    metadata = payment_intent.get("metadata") or {}
    try:
        return int(metadata["donor_id"]), int(metadata["organization_id"])
    except (KeyError, TypeError, ValueError):
        return None, None


def find_payment_records(payment_intent_id):
    """SaveTrRecord rows for a PaymentIntent.

    Joins on stripe_payment_intent_id. Rows written before that column
    existed are matched on the quoted id inside trx_details.
    """
    records = SaveTrRecord.query.filter_by(
        stripe_payment_intent_id=payment_intent_id
    ).all()
    if records:
        return records
    return SaveTrRecord.query.filter(
        SaveTrRecord.stripe_payment_intent_id.is_(None),
        SaveTrRecord.trx_details.contains(f'"{payment_intent_id}"'),
    ).all()


def _update_payment_records(payment_intent, pay_status, details, receipt_url=None):
    payment_intent_id = payment_intent["id"]
    records = find_payment_records(payment_intent_id)
    if not records:
        logger.warning(f"No transaction record found for payment intent {payment_intent_id}")
        return 0

    details = {
        "payment_intent_id": payment_intent_id,
        "stripe_status": payment_intent.get("status"),
        **details,
        "webhook_processed_at": datetime.now(timezone.utc).isoformat(),
    }
    for record in records:
        record.pay_status = pay_status
        record.stripe_payment_intent_id = payment_intent_id
        record.trx_details = json.dumps(details, default=str)
        if receipt_url:
            record.trx_recipt_url = receipt_url

    db.session.flush()
    return len(records)


def handle_payment_intent_succeeded(payment_intent):
    """Handle payment_intent.succeeded.

    Marks the donation completed and credits the organization, unless the
    intent pays a subscription invoice (invoice.payment_succeeded credits
    those).
    """
    payment_intent_id = payment_intent.get("id")
    donor_id, organization_id = _intent_parties(payment_intent)
    if donor_id is None:
        logger.error(
            f"payment_intent.succeeded: {payment_intent_id} has no donor/organization "
            f"metadata, skipping"
        )
        return None

    amount = minor_to_major(payment_intent.get("amount_received"))
    _update_payment_records(
        payment_intent,
        "completed",
        {
            "stripe_payment_method": payment_intent.get("payment_method"),
            "stripe_amount_received": payment_intent.get("amount_received"),
            "stripe_created": from_timestamp(payment_intent.get("created")),
        },
        receipt_url=payment_intent.get("receipt_url"),
    )

    if payment_intent.get("invoice"):
        db.session.commit()
        logger.info(
            f"Payment intent {payment_intent_id} pays invoice {payment_intent['invoice']}, "
            f"balance credited by the invoice event"
        )
        return amount

    increment_organization_balance(organization_id, amount)
    db.session.commit()

    notify_monthly_impact(donor_id, organization_id, amount)
    return amount


def handle_payment_intent_failed(payment_intent):
    """Handle payment_intent.payment_failed."""
    _update_payment_records(
        payment_intent,
        "failed",
        {"stripe_last_payment_error": payment_intent.get("last_payment_error")},
    )
    db.session.commit()

    donor_id, organization_id = _intent_parties(payment_intent)
    if donor_id and organization_id:
        notify_card_failure(donor_id, organization_id)


def handle_payment_intent_canceled(payment_intent):
    """Handle payment_intent.canceled."""
    _update_payment_records(payment_intent, "cancelled", {})
    db.session.commit()


def handle_payment_intent_processing(payment_intent):
    """Handle payment_intent.processing."""
    _update_payment_records(payment_intent, "pending", {})
    db.session.commit()
