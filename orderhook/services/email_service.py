"""
Order notification mail over SMTP.

Messages are rendered in the caller's app context and handed to a daemon
thread for delivery, so SMTP latency never reaches the webhook response.
Delivery failures are logged and dropped: by the time mail goes out the
order is already committed.

Usage:
    from orderhook.services.email_service import send_email

    send_email(
        to="buyer@example.com",
        subject="Order confirmation",
        template="emails/order_confirmation.html",
        context={"order_id": "...", "total_display": "10.99 USD"},
    )
"""

import logging
import re
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def _plain_text(html_body):
    """Rough text/plain alternative for clients that won't render HTML."""
    text = _TAG_RE.sub("", html_body)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def build_message(to, subject, html_body, sender):
    """Assemble a multipart/alternative message (text first, HTML preferred)."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to if isinstance(to, str) else ", ".join(to)
    msg.attach(MIMEText(_plain_text(html_body), "plain"))
    msg.attach(MIMEText(html_body, "html"))
    return msg


def _deliver(config, msg):
    """Send one message. Runs on the mail thread."""
    username = config.get("MAIL_USERNAME")
    password = config.get("MAIL_PASSWORD")
    if not username or not password:
        logger.warning(f"Mail not configured, dropping '{msg['Subject']}' to {msg['To']}")
        return False

    try:
        with smtplib.SMTP(
            config.get("MAIL_SMTP_HOST", "smtp.gmail.com"),
            config.get("MAIL_SMTP_PORT", 587),
            timeout=30,
        ) as server:
            if config.get("MAIL_USE_TLS", True):
                server.starttls()
            server.login(username, password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Mail to {msg['To']} failed: {e}")
        return False

    logger.info(f"Mail sent to {msg['To']}: {msg['Subject']}")
    return True


def send_email(to, subject, template, context=None):
    """
    Render a template and deliver it in the background.

    Args:
        to:        Recipient address (str or list).
        subject:   Subject line.
        template:  Jinja2 HTML template path (relative to templates/).
        context:   Template variables.

    Returns the started delivery thread.
    """
    config = current_app.config
    from_name = config.get("MAIL_FROM_NAME", "Order Desk")
    from_email = config.get("MAIL_FROM_ADDRESS") or config.get("MAIL_USERNAME") or ""

    html_body = render_template(template, **(context or {}))
    msg = build_message(to, subject, html_body, f"{from_name} <{from_email}>")

    # Plain dict: the thread must not touch the app context.
    thread = threading.Thread(
        target=_deliver, args=(dict(config), msg), name="order-mail", daemon=True
    )
    thread.start()
    return thread
