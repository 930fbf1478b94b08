"""Donation package model.

A recurring giving tier. Subscriptions copy amount/currency from the
package referenced in the Stripe subscription metadata.
"""

from changeworks.extensions import db


class Package(db.Model):
    __tablename__ = "packages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="usd")
    status = db.Column(db.String(50), default="active")  # active | inactive
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<Package {self.name} {self.price} {self.currency}>"
