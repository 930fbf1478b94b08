"""Donor model.

A giving individual. Created unverified on signup; status flips to True
once the email token is confirmed.
"""

from werkzeug.security import generate_password_hash

from changeworks.extensions import db


class Donor(db.Model):
    __tablename__ = "donors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=True)  # werkzeug hash
    phone = db.Column(db.String(50), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)
    status = db.Column(db.Boolean, nullable=False, default=False)  # verified
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id"), nullable=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    organization = db.relationship("Organization", back_populates="donors")
    subscriptions = db.relationship(
        "Subscription", back_populates="donor", lazy="dynamic"
    )

    def set_password(self, raw_password):
        self.password = generate_password_hash(raw_password)

    def __repr__(self):
        return f"<Donor {self.email}>"
