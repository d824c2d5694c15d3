"""Shared test fixtures for the webhook ingestion test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- sign_stripe / sign_square: real HMAC signatures for request bodies
- post_stripe / post_square: sign + POST an event to the webhook endpoints
"""

import base64
import hashlib
import hmac
import json
import time

import pytest

from orderhook import create_app
from orderhook.extensions import db as _db


def stripe_signature_header(body, secret, timestamp=None, extra_signatures=()):
    """Build a Stripe-Signature header value the way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + body
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    parts = [f"t={timestamp}"] + [f"v1={s}" for s in extra_signatures] + [f"v1={sig}"]
    return ",".join(parts)


def square_signature_header(body, signature_key, notification_url):
    """Build an x-square-hmacsha256-signature header value."""
    digest = hmac.new(
        signature_key.encode("utf-8"),
        notification_url.encode("utf-8") + body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("utf-8")


def _encode(event):
    if isinstance(event, (bytes, bytearray)):
        return bytes(event)
    return json.dumps(event).encode("utf-8")


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def sign_stripe(app):
    """Sign a body with the configured Stripe secret (overridable)."""

    def _sign(body, secret=None, timestamp=None, extra_signatures=()):
        return stripe_signature_header(
            body,
            secret or app.config["STRIPE_WEBHOOK_SECRET"],
            timestamp=timestamp,
            extra_signatures=extra_signatures,
        )

    return _sign


@pytest.fixture
def sign_square(app):
    """Sign a body with the configured Square key and URL (overridable)."""

    def _sign(body, key=None, url=None):
        return square_signature_header(
            body,
            key or app.config["SQUARE_WEBHOOK_SIGNATURE_KEY"],
            url or app.config["SQUARE_WEBHOOK_URL"],
        )

    return _sign


@pytest.fixture
def post_stripe(client, sign_stripe):
    """POST a (signed) Stripe event to /api/webhooks/stripe."""

    def _post(event, signature=None):
        body = _encode(event)
        return client.post(
            "/api/webhooks/stripe",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": signature or sign_stripe(body)},
        )

    return _post


@pytest.fixture
def post_square(client, sign_square):
    """POST a (signed) Square event to /api/webhooks/square."""

    def _post(event, signature=None):
        body = _encode(event)
        return client.post(
            "/api/webhooks/square",
            data=body,
            content_type="application/json",
            headers={"x-square-hmacsha256-signature": signature or sign_square(body)},
        )

    return _post


def stripe_event(event_id, event_type, obj):
    """A minimal Stripe event envelope."""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": 1760000000,
        "data": {"object": obj},
    }


def square_payment_event(event_id, payment_id, status="COMPLETED",
                         amount=2500, currency="USD", email=None):
    """A minimal Square payment.updated envelope."""
    payment = {
        "id": payment_id,
        "status": status,
        "amount_money": {"amount": amount, "currency": currency},
    }
    if email:
        payment["buyer_email_address"] = email
    return {
        "merchant_id": "MLTEST",
        "type": "payment.updated",
        "event_id": event_id,
        "created_at": "2026-10-18T12:00:00Z",
        "data": {
            "type": "payment",
            "id": payment_id,
            "object": {"payment": payment},
        },
    }


@pytest.fixture
def make_stripe_event():
    return stripe_event


@pytest.fixture
def make_square_payment_event():
    return square_payment_event
