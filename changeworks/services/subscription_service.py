"""Subscription service — mirrors Stripe subscriptions into the database.

Responsible for:
- Upserting subscriptions rows from customer.subscription.* webhooks
- Mapping Stripe's status to the local (upper-cased) status
- Flagging transitions out of a terminal status
- Manual Stripe -> database sync for a customer (flask sync-subscriptions)

Stripe is the source of truth: every write is keyed by
stripe_subscription_id, so replays and out-of-order deliveries converge.
"""

import logging
from datetime import datetime, timezone

import stripe
from flask import current_app

from changeworks.extensions import db
from changeworks.models.package import Package
from changeworks.models.subscription import Subscription
from changeworks.services.stripe_objects import from_timestamp, to_dict

logger = logging.getLogger(__name__)


def _first_item(sub_data):
    items = sub_data.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}


def _extract_period(sub_data, field):
    """Extract current_period_start/end from a Stripe subscription object.

    In newer Stripe API versions the period fields moved from the
    subscription top level to items.data[0]. This helper checks both.
    """
    ts = sub_data.get(field)
    if not ts:
        ts = _first_item(sub_data).get(field)
    return from_timestamp(ts)


def _extract_interval(sub_data):
    """Return (interval, interval_count) from the first item's recurring price."""
    price = _first_item(sub_data).get("price") or {}
    recurring = price.get("recurring") or {}
    return (
        recurring.get("interval") or "month",
        recurring.get("interval_count") or 1,
    )


def mirrored_fields(sub_data):
    """Fields copied from Stripe on every subscription event."""
    return {
        "status": str(sub_data["status"]).upper(),
        "current_period_start": _extract_period(sub_data, "current_period_start"),
        "current_period_end": _extract_period(sub_data, "current_period_end"),
        "cancel_at_period_end": bool(sub_data.get("cancel_at_period_end", False)),
        "canceled_at": from_timestamp(sub_data.get("canceled_at")),
        "trial_start": from_timestamp(sub_data.get("trial_start")),
        "trial_end": from_timestamp(sub_data.get("trial_end")),
    }


def _apply_fields(sub, fields):
    new_status = fields["status"]
    if sub.is_unexpected_transition(new_status):
        # Applied anyway; Stripe decides, we only flag it.
        logger.warning(
            f"Subscription {sub.stripe_subscription_id} moved from terminal "
            f"status {sub.status} to {new_status}"
        )
    for name, value in fields.items():
        setattr(sub, name, value)


def _parse_metadata_ids(metadata):
    """Return (donor_id, organization_id, package_id) or None if incomplete."""
    try:
        return (
            int(metadata["donor_id"]),
            int(metadata["organization_id"]),
            int(metadata["package_id"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


def upsert_subscription(sub_data, donor_id, organization_id, package,
                        created_via="webhook"):
    """Create or update a Subscription from a Stripe subscription object.

    Insert on first sight; on replay only the mirrored status/period
    fields are updated. Uses flush() so the caller controls the commit.
    """
    stripe_subscription_id = sub_data["id"]
    fields = mirrored_fields(sub_data)

    sub = Subscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()

    if sub:
        _apply_fields(sub, fields)
    else:
        interval, interval_count = _extract_interval(sub_data)
        sub = Subscription(
            stripe_subscription_id=stripe_subscription_id,
            donor_id=donor_id,
            organization_id=organization_id,
            package_id=package.id,
            amount=package.price,
            currency=package.currency,
            interval=interval,
            interval_count=interval_count,
            metadata_={
                "stripe_customer_id": sub_data.get("customer"),
                "created_via": created_via,
            },
            **fields,
        )
        db.session.add(sub)

    db.session.flush()
    return sub


# ──────────────────────────────────────────────
# Webhook handlers
# ──────────────────────────────────────────────

def handle_subscription_created(sub_data, created_via="webhook"):
    """Handle customer.subscription.created.

    Requires donor/organization/package ids in the subscription metadata
    and an existing package. Without them nothing is written.
    """
    stripe_subscription_id = sub_data.get("id")
    ids = _parse_metadata_ids(sub_data.get("metadata") or {})
    if ids is None:
        logger.warning(
            f"subscription.created: missing metadata ids for sub={stripe_subscription_id}"
        )
        return None
    donor_id, organization_id, package_id = ids

    package = db.session.get(Package, package_id)
    if not package:
        logger.error(
            f"Package {package_id} not found for subscription {stripe_subscription_id}"
        )
        return None

    sub = upsert_subscription(
        sub_data, donor_id, organization_id, package, created_via=created_via
    )
    db.session.commit()
    logger.info(f"Subscription {stripe_subscription_id} stored as id={sub.id} ({sub.status})")
    return sub


def handle_subscription_updated(sub_data):
    """Handle customer.subscription.updated.

    No local row means the created event has not arrived yet (or never
    will); that is a no-op, not an error.
    """
    stripe_subscription_id = sub_data.get("id")
    sub = Subscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()
    if not sub:
        logger.info(
            f"subscription.updated: no local record for sub={stripe_subscription_id}"
        )
        return None

    _apply_fields(sub, mirrored_fields(sub_data))
    db.session.commit()
    logger.info(f"Updated subscription {stripe_subscription_id} status to {sub.status}")
    return sub


def handle_subscription_deleted(sub_data):
    """Handle customer.subscription.deleted — mark CANCELED and stamp canceled_at."""
    stripe_subscription_id = sub_data.get("id")
    sub = Subscription.query.filter_by(
        stripe_subscription_id=stripe_subscription_id
    ).first()
    if not sub:
        logger.info(
            f"subscription.deleted: no local record for sub={stripe_subscription_id}"
        )
        return None

    sub.status = "CANCELED"
    sub.canceled_at = (
        from_timestamp(sub_data.get("canceled_at"))
        or datetime.now(timezone.utc)
    )
    sub.cancel_at_period_end = bool(sub_data.get("cancel_at_period_end", False))
    db.session.commit()
    logger.info(f"Marked subscription {stripe_subscription_id} as canceled")
    return sub


# ──────────────────────────────────────────────
# Manual sync
# ──────────────────────────────────────────────

def sync_customer_subscriptions(customer_id=None, customer_email=None):
    """Pull every subscription of a Stripe customer into the database.

    Used to repair gaps left by missed webhooks. Subscriptions whose
    metadata or package cannot be resolved are skipped and logged.

    Returns (customer, [Subscription, ...]).
    Raises ValueError if the customer cannot be found.
    """
    if not customer_id and not customer_email:
        raise ValueError("Either customer_id or customer_email is required")

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]

    if customer_id:
        customer = stripe.Customer.retrieve(customer_id)
    else:
        customers = stripe.Customer.list(email=customer_email, limit=1)
        customer = customers.data[0] if customers.data else None

    if not customer:
        raise ValueError("Customer not found in Stripe")

    subscriptions = stripe.Subscription.list(
        customer=customer["id"], status="all", limit=100
    )

    synced = []
    for stripe_sub in subscriptions.auto_paging_iter():
        sub_data = to_dict(stripe_sub)
        try:
            sub = handle_subscription_created(sub_data, created_via="manual_sync")
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error syncing subscription {sub_data.get('id')}: {e}")
            continue
        if sub:
            synced.append(sub)

    return customer, synced
