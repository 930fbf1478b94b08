"""Shared test fixtures for the webhook test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- mail_thread: the patched SMTP sender thread (no real email in tests)
- seed_data: organization 7, a donor and a monthly package
- subscription: local subscription "sub_123" for the seeded donor
- post_webhook: POST a (signature-patched) Stripe event to the webhook
"""

import json
from decimal import Decimal
from unittest.mock import patch

import pytest

from changeworks import create_app
from changeworks.extensions import db as _db
from changeworks.models.donor import Donor
from changeworks.models.organization import Organization
from changeworks.models.package import Package
from changeworks.models.subscription import Subscription

WEBHOOK_URL = "/api/payments/webhook"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def mail_thread():
    """Replace the SMTP sender thread so tests never open a connection."""
    with patch("changeworks.services.email_service.threading.Thread") as mock_thread:
        yield mock_thread


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed an organization (id 7, balance 0), a donor and a package.

    Returns plain IDs so tests can use them across app contexts.
    """
    with app.app_context():
        organization = Organization(
            id=7,
            name="Hope Shelter",
            email="hello@hopeshelter.org",
            balance=Decimal("0.00"),
        )
        _db.session.add(organization)
        _db.session.flush()

        donor = Donor(
            name="Jane Giver",
            email="jane@example.com",
            organization_id=organization.id,
            status=True,
        )
        donor.set_password("donor123")
        _db.session.add(donor)

        package = Package(
            name="Monthly Supporter",
            price=Decimal("25.00"),
            currency="usd",
        )
        _db.session.add(package)
        _db.session.commit()

        return {
            "organization_id": organization.id,
            "donor_id": donor.id,
            "donor_email": donor.email,
            "package_id": package.id,
        }


@pytest.fixture
def subscription(app, seed_data):
    """An ACTIVE local subscription sub_123 owned by organization 7."""
    with app.app_context():
        sub = Subscription(
            stripe_subscription_id="sub_123",
            donor_id=seed_data["donor_id"],
            organization_id=seed_data["organization_id"],
            package_id=seed_data["package_id"],
            status="ACTIVE",
            amount=Decimal("25.00"),
            currency="usd",
        )
        _db.session.add(sub)
        _db.session.commit()
        return sub.id


@pytest.fixture
def post_webhook(client):
    """POST an event to the webhook with signature verification patched."""

    def _post(event):
        with patch(
            "changeworks.services.stripe_service.stripe.Webhook.construct_event",
            return_value=event,
        ):
            return client.post(
                WEBHOOK_URL,
                data=json.dumps(event),
                content_type="application/json",
                headers={"Stripe-Signature": "valid_sig"},
            )

    return _post


def make_event(event_id, event_type, obj):
    """Build a minimal Stripe event envelope."""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }
