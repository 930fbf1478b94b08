"""Organization model.

The charity receiving donations. balance is a running total of money
received through Stripe and is only ever incremented, by the webhook
payment-success paths (see services/transaction_service.py).
"""

from changeworks.extensions import db


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    balance = db.Column(
        db.Numeric(12, 2), nullable=False, default=0
    )  # major currency units
    ghl_id = db.Column(db.String(255), nullable=True)  # CRM location id
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    donors = db.relationship(
        "Donor", back_populates="organization", lazy="dynamic"
    )
    subscriptions = db.relationship(
        "Subscription", back_populates="organization", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Organization {self.name}>"
