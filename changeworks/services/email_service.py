"""
Email service for donor notifications.

Uses SMTP to send transactional HTML emails rendered from Jinja templates.
Sending happens in a background thread so a webhook never waits on SMTP.

Usage:
    from changeworks.services.email_service import send_email

    success, error = send_email(
        to="donor@example.com",
        subject="Hello",
        template="emails/monthly_impact.html",
        context={"donor_name": "Jane"},
    )
"""

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def _send_smtp(app, msg):
    """Send an email via SMTP (runs in a background thread)."""
    with app.app_context():
        host = app.config.get("MAIL_SMTP_HOST")
        port = app.config.get("MAIL_SMTP_PORT", 587)
        username = app.config.get("MAIL_USERNAME")
        password = app.config.get("MAIL_PASSWORD")

        try:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(username, password)
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
        except Exception as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")


def send_email(to, subject, template, context=None, reply_to=None):
    """
    Render a templated HTML email and queue it for sending.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address.

    Returns (success, error). success means the message was rendered and
    handed to the sender thread; SMTP failures after that are only logged.
    """
    app = current_app._get_current_object()
    context = context or {}

    if not app.config.get("MAIL_USERNAME") or not app.config.get("MAIL_PASSWORD"):
        logger.warning("Email not sent — MAIL_USERNAME or MAIL_PASSWORD not configured.")
        return False, "Email service not configured"

    from_name = app.config.get("MAIL_FROM_NAME", "ChangeWorks Fund")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME")

    try:
        html_body = render_template(template, **context)
    except Exception as e:
        logger.error(f"Failed to render email template {template}: {e}")
        return False, str(e)

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(html_body, "html"))

    thread = threading.Thread(target=_send_smtp, args=(app, msg))
    thread.daemon = True
    thread.start()
    return True, None


def send_monthly_impact_email(donor, organization, dashboard_link, month, total_amount):
    """Thank a donor for this period's giving to an organization.

    total_amount is a preformatted major-unit string, e.g. "50.00".
    """
    return send_email(
        to=donor.email,
        subject=f"Your {month} impact with {organization.name}",
        template="emails/monthly_impact.html",
        context={
            "donor_name": donor.name,
            "organization_name": organization.name,
            "dashboard_link": dashboard_link,
            "month": month,
            "total_amount": total_amount,
        },
        reply_to=organization.email,
    )


def send_card_failure_alert_email(donor, organization, dashboard_link):
    """Ask a donor to update their card after a failed charge."""
    return send_email(
        to=donor.email,
        subject=f"Action needed: your donation to {organization.name} did not go through",
        template="emails/card_failure_alert.html",
        context={
            "donor_name": donor.name,
            "organization_name": organization.name,
            "dashboard_link": dashboard_link,
        },
        reply_to=organization.email,
    )
