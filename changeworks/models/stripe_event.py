"""Stripe event model (processed-events ledger).

Every verified webhook event is recorded by its Stripe event ID, with the
outcome of its last delivery. When STRIPE_DEDUPE_EVENTS is on, an event
already marked "processed" is acknowledged without being applied again.
"""

from changeworks.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(db.Integer, primary_key=True)
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "invoice.payment_succeeded"
    status = db.Column(
        db.String(32), nullable=False, default="processed"
    )  # processed | failed | ignored
    error_message = db.Column(db.Text, nullable=True)
    delivery_count = db.Column(db.Integer, nullable=False, default=1)
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type})>"
