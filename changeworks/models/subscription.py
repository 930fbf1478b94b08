"""Subscription models.

- Subscription: local mirror of a Stripe subscription, keyed by
  stripe_subscription_id. status is Stripe's status upper-cased.
- SubscriptionTransaction: one row per Stripe invoice (billing cycle
  attempt), keyed by stripe_invoice_id.

Both tables are only written through upserts on the Stripe ids so that
replayed or out-of-order webhooks converge on the same row.
"""

from changeworks.extensions import db


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    # -- Valid statuses (Stripe's vocabulary, upper-cased) --
    STATUSES = [
        "ACTIVE",
        "PAST_DUE",
        "CANCELED",
        "INCOMPLETE",
        "INCOMPLETE_EXPIRED",
        "TRIALING",
        "UNPAID",
        "PAUSED",
    ]
    # Stripe never moves a subscription out of these.
    TERMINAL_STATUSES = ("CANCELED", "INCOMPLETE_EXPIRED")

    id = db.Column(db.Integer, primary_key=True)
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "sub_1Abc..."
    donor_id = db.Column(
        db.Integer, db.ForeignKey("donors.id"), nullable=False
    )
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=False
    )
    package_id = db.Column(
        db.Integer, db.ForeignKey("packages.id"), nullable=True
    )
    status = db.Column(db.String(50), nullable=False)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_start = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=True)
    currency = db.Column(db.String(10), default="usd")
    interval = db.Column(db.String(20), default="month")  # day | week | month | year
    interval_count = db.Column(db.Integer, default=1)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # stripe_customer_id, created_via
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    donor = db.relationship("Donor", back_populates="subscriptions")
    organization = db.relationship(
        "Organization", back_populates="subscriptions"
    )
    package = db.relationship("Package")
    transactions = db.relationship(
        "SubscriptionTransaction", back_populates="subscription", lazy="dynamic"
    )

    def is_unexpected_transition(self, new_status):
        """True if moving to new_status would leave a terminal status."""
        return (
            self.status in self.TERMINAL_STATUSES
            and new_status != self.status
        )

    def __repr__(self):
        return f"<Subscription {self.stripe_subscription_id} ({self.status})>"


class SubscriptionTransaction(db.Model):
    __tablename__ = "subscription_transactions"

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(
        db.Integer, db.ForeignKey("subscriptions.id"), nullable=False
    )
    stripe_invoice_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "in_1Abc..."
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), default="usd")
    status = db.Column(db.String(50), nullable=False)  # paid | failed | open | draft
    invoice_url = db.Column(db.Text, nullable=True)
    hosted_invoice_url = db.Column(db.Text, nullable=True)
    pdf_url = db.Column(db.Text, nullable=True)
    period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    subscription = db.relationship(
        "Subscription", back_populates="transactions"
    )

    def __repr__(self):
        return f"<SubscriptionTransaction {self.stripe_invoice_id} ({self.status})>"
