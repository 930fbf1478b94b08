"""Notification service — donor emails triggered by payment webhooks.

Both notifications are best-effort: every failure (missing rows, template
errors, mail not configured) is logged and swallowed so it can never fail
a webhook whose financial writes are already committed.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from changeworks.extensions import db
from changeworks.models.donor import Donor
from changeworks.models.organization import Organization
from changeworks.services import email_service

logger = logging.getLogger(__name__)


def dashboard_link(donor_id):
    base_url = current_app.config["APP_BASE_URL"].rstrip("/")
    return f"{base_url}/donor/dashboard?donor_id={donor_id}"


def _load_parties(donor_id, organization_id):
    return (
        db.session.get(Donor, donor_id),
        db.session.get(Organization, organization_id),
    )


def notify_monthly_impact(donor_id, organization_id, amount):
    """Send the monthly impact email after a donation is credited.

    Returns True if the email was queued.
    """
    try:
        donor, organization = _load_parties(donor_id, organization_id)
        if not donor or not organization:
            logger.info(
                f"Donor {donor_id} or organization {organization_id} not found "
                f"for monthly impact email"
            )
            return False

        month = datetime.now(timezone.utc).strftime("%B")
        success, error = email_service.send_monthly_impact_email(
            donor=donor,
            organization=organization,
            dashboard_link=dashboard_link(donor.id),
            month=month,
            total_amount=f"{amount:.2f}",
        )
        if success:
            logger.info(f"Monthly impact email sent to {donor.email} for ${amount:.2f} in {month}")
        else:
            logger.error(f"Failed to send monthly impact email to {donor.email}: {error}")
        return success
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error sending monthly impact email for donor {donor_id}: {e}", exc_info=True)
        return False


def notify_card_failure(donor_id, organization_id):
    """Send the card failure alert after a failed charge.

    Returns True if the email was queued.
    """
    try:
        donor, organization = _load_parties(donor_id, organization_id)
        if not donor or not organization:
            logger.info(
                f"Donor {donor_id} or organization {organization_id} not found "
                f"for card failure alert email"
            )
            return False

        success, error = email_service.send_card_failure_alert_email(
            donor=donor,
            organization=organization,
            dashboard_link=dashboard_link(donor.id),
        )
        if success:
            logger.info(f"Card failure alert email sent to {donor.email} for {organization.name}")
        else:
            logger.error(f"Failed to send card failure alert email to {donor.email}: {error}")
        return success
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error sending card failure alert email for donor {donor_id}: {e}", exc_info=True)
        return False
