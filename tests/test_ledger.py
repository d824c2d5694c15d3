"""Tests for the webhook event ledger (claims, processed flag, stale sweep)."""

from datetime import datetime, timedelta, timezone

import pytest

from orderhook.models.webhook_event import WebhookEvent
from orderhook.services.ledger_service import (
    claim_event,
    find_stale_events,
    get_event,
    mark_failed,
    mark_processed,
)


class TestClaimEvent:

    def test_first_claim_wins(self, db_session):
        event = claim_event("stripe", "charge.succeeded", "evt_1", {"id": "evt_1"})
        db_session.commit()

        assert event is not None
        assert event.processed is False
        assert get_event("evt_1").id == event.id

    def test_second_claim_is_duplicate(self, db_session):
        claim_event("stripe", "charge.succeeded", "evt_1", {"id": "evt_1"})
        db_session.commit()

        assert claim_event("stripe", "charge.succeeded", "evt_1", {"id": "evt_1"}) is None
        assert WebhookEvent.query.count() == 1

    def test_uncommitted_claim_rolls_back(self, db_session):
        claim_event("square", "payment.updated", "sq_1", {"event_id": "sq_1"})
        db_session.rollback()
        assert get_event("sq_1") is None


class TestProcessedFlag:

    def test_mark_processed(self, db_session):
        event = claim_event("stripe", "charge.succeeded", "evt_1", {})
        mark_processed(event.id)
        db_session.commit()

        stored = get_event("evt_1")
        assert stored.processed is True
        assert stored.processed_at is not None

    def test_mark_processed_twice_is_noop(self, db_session):
        event = claim_event("stripe", "charge.succeeded", "evt_1", {})
        mark_processed(event.id)
        first_processed_at = event.processed_at
        mark_processed(event.id)
        assert event.processed_at == first_processed_at

    def test_mark_failed_keeps_unprocessed(self, db_session):
        event = claim_event("stripe", "charge.succeeded", "evt_1", {})
        mark_failed(event.id, ValueError("boom"))
        db_session.commit()

        stored = get_event("evt_1")
        assert stored.processed is False
        assert stored.error_message == "boom"

    def test_mark_failed_never_reverts_processed(self, db_session):
        event = claim_event("stripe", "charge.succeeded", "evt_1", {})
        mark_processed(event.id)
        mark_failed(event.id, "late error")
        assert event.processed is True
        assert event.error_message is None

    def test_processed_clears_previous_error(self, db_session):
        event = claim_event("stripe", "charge.succeeded", "evt_1", {})
        mark_failed(event.id, "first attempt failed")
        mark_processed(event.id)
        assert event.error_message is None

    def test_unknown_row(self):
        with pytest.raises(ValueError):
            mark_processed("does-not-exist")


class TestStaleEvents:

    def test_only_old_unprocessed_events(self, db_session):
        now = datetime.now(timezone.utc)
        old = claim_event("stripe", "charge.succeeded", "evt_old", {})
        old.created_at = now - timedelta(hours=3)
        done = claim_event("stripe", "charge.succeeded", "evt_done", {})
        done.created_at = now - timedelta(hours=3)
        mark_processed(done.id)
        recent = claim_event("stripe", "charge.succeeded", "evt_recent", {})
        recent.created_at = now - timedelta(minutes=5)
        db_session.commit()

        stale = find_stale_events(60, now=now)

        assert [e.event_id for e in stale] == ["evt_old"]
