import os
import logging

import click
from flask import Flask, jsonify

from changeworks.config import config_by_name
from changeworks.extensions import db, migrate


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from changeworks import models  # noqa: F401

    # --- Register blueprints ---
    from changeworks.blueprints.webhooks import webhooks_bp

    app.register_blueprint(webhooks_bp)

    # --- Health check ---
    @app.route("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        # JSON-only API: nothing may be loaded or framed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-demo")
    @click.option("--org-email", default="demo-charity@changeworks.local", help="Organization email")
    @click.option("--donor-email", default="demo-donor@changeworks.local", help="Donor email")
    @click.option("--password", default="donor123", help="Donor password")
    def seed_demo(org_email, donor_email, password):
        """Create a demo organization, donor and monthly package.

        Usage:
            flask seed-demo
            flask seed-demo --org-email charity@example.com
        """
        from decimal import Decimal

        from changeworks.models.donor import Donor
        from changeworks.models.organization import Organization
        from changeworks.models.package import Package

        # --- 1. Organization ---
        organization = Organization.query.filter_by(email=org_email).first()
        if organization:
            click.echo(f"Organization already exists: {org_email}")
        else:
            organization = Organization(
                name="Demo Charity",
                email=org_email,
                balance=Decimal("0.00"),
            )
            db.session.add(organization)
            db.session.flush()
            click.echo(f"Created organization: {org_email}")

        # --- 2. Donor ---
        donor = Donor.query.filter_by(email=donor_email).first()
        if donor:
            click.echo(f"Donor already exists: {donor_email}")
        else:
            donor = Donor(
                name="Demo Donor",
                email=donor_email,
                organization_id=organization.id,
                status=True,
            )
            donor.set_password(password)
            db.session.add(donor)
            db.session.flush()
            click.echo(f"Created donor: {donor_email}")

        # --- 3. Package ---
        package = Package(
            name="Monthly Supporter",
            description="Recurring $25 monthly donation",
            price=Decimal("25.00"),
            currency="usd",
        )
        db.session.add(package)
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Demo data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Organization: {organization.name} (id: {organization.id})")
        click.echo(f"  Donor:        {donor.email} / {password} (id: {donor.id})")
        click.echo(f"  Package:      {package.name} (id: {package.id})")
        click.echo("")
        click.echo("Stripe subscription metadata for this donor:")
        click.echo(
            f"  donor_id={donor.id} organization_id={organization.id} "
            f"package_id={package.id}"
        )
        click.echo("=" * 60)

    @app.cli.command("sync-subscriptions")
    @click.option("--email", "customer_email", default=None, help="Stripe customer email")
    @click.option("--customer-id", default=None, help="Stripe customer ID (cus_...)")
    def sync_subscriptions(customer_email, customer_id):
        """Copy a Stripe customer's subscriptions into the database.

        Repairs subscriptions whose customer.subscription.created webhook
        was missed. Safe to re-run: rows are upserted by Stripe ID.

        Usage:
            flask sync-subscriptions --email donor@example.com
            flask sync-subscriptions --customer-id cus_123
        """
        from changeworks.services.subscription_service import sync_customer_subscriptions

        if not app.config.get("STRIPE_SECRET_KEY"):
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return

        try:
            customer, synced = sync_customer_subscriptions(
                customer_id=customer_id, customer_email=customer_email
            )
        except ValueError as e:
            click.echo(f"ERROR: {e}")
            return

        click.echo(f"Customer: {customer['id']} ({customer.get('email') or 'no email'})")
        click.echo(f"Synced {len(synced)} subscription(s)")
        for sub in synced:
            click.echo(
                f"  {sub.stripe_subscription_id}  {sub.status}  "
                f"{sub.amount} {sub.currency}/{sub.interval}"
            )
