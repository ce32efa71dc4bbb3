"""Unit tests for the ticket and event state machines."""
import itertools

import pytest
from bson import ObjectId

from eventx.db import TICKETS
from eventx.errors import InvalidState
from eventx.lifecycle import (
    BOOKABLE_EVENT_STATUSES,
    EVENT_TRANSITIONS,
    TICKET_TRANSITIONS,
    EventStatus,
    TicketStatus,
    is_bookable,
    next_event_status,
    next_ticket_status,
    ticket_sources,
    transition_ticket,
)


class TestTicketTransitions:
    def test_table_covers_every_state(self):
        assert set(TICKET_TRANSITIONS) == set(TicketStatus)

    @pytest.mark.parametrize("current,target", list(itertools.product(TicketStatus, TicketStatus)))
    def test_next_status_is_total(self, current, target):
        if target in TICKET_TRANSITIONS[current]:
            assert next_ticket_status(current.value, target.value) is target
        else:
            with pytest.raises(InvalidState):
                next_ticket_status(current.value, target.value)

    def test_used_and_refunded_are_terminal(self):
        assert TICKET_TRANSITIONS[TicketStatus.USED] == frozenset()
        assert TICKET_TRANSITIONS[TicketStatus.REFUNDED] == frozenset()

    def test_refund_only_after_cancellation(self):
        assert ticket_sources(TicketStatus.REFUNDED) == {TicketStatus.CANCELLED}
        with pytest.raises(InvalidState):
            next_ticket_status("active", "refunded")

    def test_unknown_state_is_rejected(self):
        with pytest.raises(InvalidState) as exc:
            next_ticket_status("pending", "used")
        assert exc.value.details == {"from": "pending", "to": "used"}


class TestEventTransitions:
    def test_table_covers_every_state(self):
        assert set(EVENT_TRANSITIONS) == set(EventStatus)

    def test_forward_path(self):
        status = EventStatus.DRAFT
        for target in ("upcoming", "active", "closed", "cancelled"):
            status = next_event_status(status, target)
        assert status is EventStatus.CANCELLED

    @pytest.mark.parametrize("current", list(EventStatus))
    def test_any_state_but_cancelled_can_cancel(self, current):
        if current is EventStatus.CANCELLED:
            with pytest.raises(InvalidState):
                next_event_status(current, "cancelled")
        else:
            assert next_event_status(current, "cancelled") is EventStatus.CANCELLED

    def test_cannot_reopen_closed_event(self):
        with pytest.raises(InvalidState):
            next_event_status("closed", "active")

    def test_bookable_set(self):
        assert BOOKABLE_EVENT_STATUSES == {EventStatus.UPCOMING, EventStatus.ACTIVE}
        assert is_bookable("active")
        assert is_bookable("upcoming")
        for status in ("draft", "closed", "cancelled", None):
            assert not is_bookable(status)


class TestTransitionTicket:
    def _insert(self, db, status):
        return db[TICKETS].insert_one({"status": status, "event_id": ObjectId(), "used_at": None}).inserted_id

    def test_stamps_the_target_timestamp(self, db):
        tid = self._insert(db, "active")
        updated = transition_ticket(db[TICKETS], tid, TicketStatus.USED)
        assert updated["status"] == "used"
        assert updated["used_at"]

    def test_misses_from_disallowed_state(self, db):
        tid = self._insert(db, "used")
        assert transition_ticket(db[TICKETS], tid, TicketStatus.CANCELLED) is None
        assert db[TICKETS].find_one({"_id": tid})["status"] == "used"

    def test_misses_missing_ticket(self, db):
        assert transition_ticket(db[TICKETS], ObjectId(), TicketStatus.USED) is None

    def test_extra_filter_restricts_match(self, db):
        tid = self._insert(db, "active")
        assert transition_ticket(db[TICKETS], tid, TicketStatus.CANCELLED, extra_filter={"user_id": ObjectId()}) is None
