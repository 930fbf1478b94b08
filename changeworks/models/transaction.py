"""One-time donation transaction model.

A SaveTrRecord row is written as "pending" when a PaymentIntent is created
and moved to a terminal pay_status by the payment_intent.* webhooks.

stripe_payment_intent_id is the join key for webhooks. Older rows only
carry the intent id inside the trx_details JSON blob.
"""

from changeworks.extensions import db


class SaveTrRecord(db.Model):
    __tablename__ = "save_tr_records"

    PAY_STATUSES = ["pending", "completed", "failed", "cancelled"]

    id = db.Column(db.Integer, primary_key=True)
    trx_id = db.Column(db.String(255), unique=True, nullable=False)
    trx_date = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    trx_amount = db.Column(db.Numeric(12, 2), nullable=False)
    trx_method = db.Column(db.String(50), default="stripe")
    trx_donor_id = db.Column(
        db.Integer, db.ForeignKey("donors.id"), nullable=True
    )
    trx_organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=True
    )
    trx_details = db.Column(db.Text, nullable=True)  # serialized JSON
    trx_recipt_url = db.Column(db.Text, nullable=True)
    pay_status = db.Column(db.String(50), nullable=False, default="pending")
    stripe_payment_intent_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # e.g. "pi_1Abc..."
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<SaveTrRecord {self.trx_id} ({self.pay_status})>"
