"""Tests for the webhook endpoint and event dispatch.

Covers:
- Missing Stripe configuration (503)
- Webhook signature verification (missing, invalid, real HMAC)
- End-to-end signed invoice.payment_succeeded delivery
- Unknown event types (acknowledged, recorded as ignored)
- Handler failures (logged, still 200)
- Processed-events ledger and optional deduplication
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import MagicMock, patch

from changeworks.extensions import db
from changeworks.models.organization import Organization
from changeworks.models.stripe_event import StripeEvent
from changeworks.models.subscription import SubscriptionTransaction
from conftest import WEBHOOK_URL, make_event


def _sign(payload, secret, timestamp=None):
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _paid_invoice(invoice_id="in_001", amount_paid=5000, subscription="sub_123"):
    return {
        "id": invoice_id,
        "object": "invoice",
        "subscription": subscription,
        "amount_paid": amount_paid,
        "amount_due": amount_paid,
        "currency": "usd",
        "status": "paid",
        "period_start": 1767225600,
        "period_end": 1769904000,
        "hosted_invoice_url": "https://invoice.stripe.com/i/in_001",
        "invoice_pdf": "https://pay.stripe.com/invoice/in_001/pdf",
    }


class TestWebhookConfig:
    """Missing Stripe credentials -> 503 without verification."""

    @patch("changeworks.services.stripe_service.stripe.Webhook.construct_event")
    def test_missing_webhook_secret_returns_503(self, mock_construct, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", None)

        resp = client.post(
            WEBHOOK_URL,
            data="{}",
            content_type="application/json",
            headers={"Stripe-Signature": "valid_sig"},
        )
        assert resp.status_code == 503
        mock_construct.assert_not_called()

    @patch("changeworks.services.stripe_service.stripe.Webhook.construct_event")
    def test_missing_secret_key_returns_503(self, mock_construct, client, app, monkeypatch):
        monkeypatch.setitem(app.config, "STRIPE_SECRET_KEY", "")

        resp = client.post(
            WEBHOOK_URL,
            data="{}",
            content_type="application/json",
            headers={"Stripe-Signature": "valid_sig"},
        )
        assert resp.status_code == 503
        mock_construct.assert_not_called()


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client, seed_data):
        """POST without Stripe-Signature -> 400."""
        resp = client.post(
            WEBHOOK_URL,
            data="{}",
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data

    @patch("changeworks.services.stripe_service.stripe.Webhook.construct_event")
    def test_invalid_signature_returns_400(self, mock_construct, client, seed_data, subscription, app):
        """Bad signature -> 400 and nothing written."""
        mock_construct.side_effect = Exception("Invalid signature")

        resp = client.post(
            WEBHOOK_URL,
            data=json.dumps(make_event("evt_forged", "invoice.payment_succeeded", _paid_invoice())),
            content_type="application/json",
            headers={"Stripe-Signature": "bad_sig"},
        )
        assert resp.status_code == 400

        with app.app_context():
            assert StripeEvent.query.count() == 0
            assert SubscriptionTransaction.query.count() == 0
            org = db.session.get(Organization, 7)
            assert org.balance == Decimal("0.00")

    def test_wrong_secret_rejected_by_stripe(self, client, seed_data, subscription, app):
        """A payload signed with another secret fails real verification."""
        payload = json.dumps(make_event("evt_wrong", "invoice.payment_succeeded", _paid_invoice()))

        resp = client.post(
            WEBHOOK_URL,
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": _sign(payload, "whsec_someone_else")},
        )
        assert resp.status_code == 400

        with app.app_context():
            assert StripeEvent.query.count() == 0
            assert SubscriptionTransaction.query.count() == 0


class TestSignedDelivery:
    """Full path with a genuinely signed payload."""

    def test_invoice_paid_credits_organization(self, client, seed_data, subscription, app):
        """$50.00 invoice for sub_123 -> one paid transaction, org 7 balance 50."""
        payload = json.dumps(make_event("evt_signed_001", "invoice.payment_succeeded", _paid_invoice()))

        resp = client.post(
            WEBHOOK_URL,
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": _sign(payload, app.config["STRIPE_WEBHOOK_SECRET"])},
        )
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

        with app.app_context():
            txns = SubscriptionTransaction.query.all()
            assert len(txns) == 1
            assert txns[0].amount == Decimal("50.00")
            assert txns[0].status == "paid"
            assert txns[0].stripe_invoice_id == "in_001"

            org = db.session.get(Organization, 7)
            assert org.balance == Decimal("50.00")


class TestDispatch:
    """Routing, failure isolation and the events ledger."""

    def test_unknown_event_acknowledged(self, post_webhook, seed_data, app):
        """Unknown event type -> 200, recorded as ignored."""
        resp = post_webhook(make_event("evt_unknown_001", "customer.created", {"id": "cus_1"}))
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

        with app.app_context():
            evt = StripeEvent.query.filter_by(stripe_event_id="evt_unknown_001").first()
            assert evt is not None
            assert evt.status == "ignored"
            assert evt.event_type == "customer.created"

    def test_handler_error_still_returns_200(self, post_webhook, seed_data, app):
        """A raising handler is logged and the event is acknowledged."""
        failing = MagicMock(side_effect=RuntimeError("database unavailable"))
        with patch.dict(
            "changeworks.services.stripe_service.EVENT_HANDLERS",
            {"invoice.payment_succeeded": failing},
        ):
            resp = post_webhook(make_event("evt_boom", "invoice.payment_succeeded", _paid_invoice()))

        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}
        failing.assert_called_once()

        with app.app_context():
            evt = StripeEvent.query.filter_by(stripe_event_id="evt_boom").first()
            assert evt.status == "failed"
            assert "database unavailable" in evt.error_message

    def test_exception_before_dispatch_returns_500(self, client, seed_data):
        """Unexpected top-level failure -> 500."""
        with patch(
            "changeworks.blueprints.webhooks.missing_stripe_config",
            side_effect=RuntimeError("config exploded"),
        ):
            resp = client.post(
                WEBHOOK_URL,
                data="{}",
                content_type="application/json",
                headers={"Stripe-Signature": "valid_sig"},
            )
        assert resp.status_code == 500

    def test_redelivery_counted_in_ledger(self, post_webhook, seed_data, app):
        event = make_event("evt_twice", "customer.created", {"id": "cus_1"})
        post_webhook(event)
        post_webhook(event)

        with app.app_context():
            records = StripeEvent.query.filter_by(stripe_event_id="evt_twice").all()
            assert len(records) == 1
            assert records[0].delivery_count == 2

    def test_dedupe_skips_processed_event(self, post_webhook, seed_data, subscription, app, monkeypatch):
        """With STRIPE_DEDUPE_EVENTS on, a replayed paid invoice is not re-credited."""
        monkeypatch.setitem(app.config, "STRIPE_DEDUPE_EVENTS", True)
        event = make_event("evt_once", "invoice.payment_succeeded", _paid_invoice())

        assert post_webhook(event).status_code == 200
        assert post_webhook(event).status_code == 200

        with app.app_context():
            org = db.session.get(Organization, 7)
            assert org.balance == Decimal("50.00")
            evt = StripeEvent.query.filter_by(stripe_event_id="evt_once").first()
            assert evt.delivery_count == 2

    def test_dedupe_retries_failed_event(self, post_webhook, seed_data, subscription, app, monkeypatch):
        """A delivery that failed before is applied when Stripe resends it."""
        monkeypatch.setitem(app.config, "STRIPE_DEDUPE_EVENTS", True)
        event = make_event("evt_retry", "invoice.payment_succeeded", _paid_invoice())

        with patch.dict(
            "changeworks.services.stripe_service.EVENT_HANDLERS",
            {"invoice.payment_succeeded": MagicMock(side_effect=RuntimeError("timeout"))},
        ):
            post_webhook(event)
        post_webhook(event)

        with app.app_context():
            org = db.session.get(Organization, 7)
            assert org.balance == Decimal("50.00")
            evt = StripeEvent.query.filter_by(stripe_event_id="evt_retry").first()
            assert evt.status == "processed"
            assert evt.error_message is None
