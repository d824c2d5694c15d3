"""Concurrent deliveries against a file-backed database.

Each thread uses its own test client, app context and database connection,
so the only thing serializing them is the database's uniqueness checks.
"""

import json
import threading

import pytest

from conftest import stripe_signature_header
from orderhook import create_app
from orderhook.extensions import db
from orderhook.models.order import Order
from orderhook.models.webhook_event import WebhookEvent

THREADS = 5


@pytest.fixture
def file_app(tmp_path):
    app = create_app("testing", test_config={
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _payment_event(event_id, intent_id="pi_race"):
    return json.dumps({
        "id": event_id,
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "amount": 1099, "currency": "usd"}},
    }).encode()


def _deliver_concurrently(app, bodies):
    secret = app.config["STRIPE_WEBHOOK_SECRET"]
    barrier = threading.Barrier(len(bodies))
    results = [None] * len(bodies)

    def worker(i, body):
        client = app.test_client()
        headers = {"Stripe-Signature": stripe_signature_header(body, secret)}
        barrier.wait()
        resp = client.post(
            "/api/webhooks/stripe",
            data=body,
            content_type="application/json",
            headers=headers,
        )
        results[i] = (resp.status_code, resp.get_json())

    threads = [
        threading.Thread(target=worker, args=(i, body)) for i, body in enumerate(bodies)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


def test_parallel_replays_materialize_once(file_app):
    """N deliveries of one event -> one order, N-1 duplicates."""
    body = _payment_event("evt_race")
    results = _deliver_concurrently(file_app, [body] * THREADS)

    assert all(status == 200 for status, _ in results)
    fresh = [r for _, r in results if r == {"received": True}]
    duplicates = [r for _, r in results if r == {"received": True, "duplicate": True}]
    assert len(fresh) == 1
    assert len(duplicates) == THREADS - 1

    with file_app.app_context():
        assert WebhookEvent.query.count() == 1
        assert Order.query.count() == 1


def test_parallel_events_for_one_payment(file_app):
    """Different event ids for the same payment -> one order, all processed."""
    bodies = [_payment_event(f"evt_{i}") for i in range(THREADS)]
    results = _deliver_concurrently(file_app, bodies)

    assert all(r == (200, {"received": True}) for r in results)
    with file_app.app_context():
        assert WebhookEvent.query.filter_by(processed=True).count() == THREADS
        assert Order.query.count() == 1
