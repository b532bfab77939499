"""Tests for TransitionLogSelector and the eager current-state loaders."""

import pytest
from sqlalchemy import event, select

from state_kernel.models.transition_log import TransitionLog
from state_kernel.selectors.transition_log_selector import TransitionLogSelector
from state_kernel.services.state_handle import HandleStatus
from state_kernel.stateful import (
    current_state_relation_name,
    load_current_state,
    with_current_state,
)
from tests.support.models import Booking, BookingStatus, PaymentStatus


@pytest.fixture
def select_counter(db_engine):
    """Count SELECT statements sent to the database."""
    statements: list[str] = []

    def _count(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(db_engine, "before_cursor_execute", _count)
    yield statements
    event.remove(db_engine, "before_cursor_execute", _count)


class TestSelectorReads:
    def test_latest_row_and_history(self, make_booking, session_factory):
        booking = make_booking()
        booking.payment_state.transition("authorize")
        last = booking.payment_state.transition("capture")
        owner_id = booking.state_owner_id()

        with session_factory() as s:
            selector = TransitionLogSelector(s)
            assert selector.latest_row("Booking", owner_id, "payment_state").id == last.id
            assert selector.latest_row("Booking", owner_id, "state") is None
            assert [r.to_state for r in selector.history("Booking", owner_id)] == [
                "authorized",
                "captured",
            ]

    def test_has_reached_and_count(self, make_booking, session_factory):
        booking = make_booking()
        booking.state.transition("pay")
        owner_id = booking.state_owner_id()

        with session_factory() as s:
            selector = TransitionLogSelector(s)
            assert selector.has_reached("Booking", owner_id, "state", BookingStatus.PAID)
            assert not selector.has_reached("Booking", owner_id, "state", "failed")
            assert selector.count_rows("Booking", owner_id) == 1
            assert selector.count_rows("Booking", owner_id, "payment_state") == 0

    def test_query_rows(self, make_booking, session_factory):
        make_booking().state.transition("pay")
        make_booking().state.transition("fail")

        with session_factory() as s:
            rows = TransitionLogSelector(s).query_rows(TransitionLog.to_state == "failed")
        assert [r.transition for r in rows] == ["fail"]

    def test_latest_rows_empty_batch(self, session):
        assert TransitionLogSelector(session).latest_rows("Booking", [], "state") == {}


class TestLatestRowsBatch:
    def test_one_query_for_the_batch(self, make_booking, session_factory, select_counter):
        bookings = [make_booking() for _ in range(4)]
        bookings[0].payment_state.transition("authorize")
        bookings[0].payment_state.transition("capture")
        bookings[2].payment_state.transition("authorize")
        owner_ids = [b.state_owner_id() for b in bookings]

        select_counter.clear()
        with session_factory() as s:
            rows = TransitionLogSelector(s).latest_rows("Booking", owner_ids, "payment_state")

        assert len(select_counter) == 1
        assert set(rows) == {owner_ids[0], owner_ids[2]}
        assert rows[owner_ids[0]].to_state == "captured"
        assert rows[owner_ids[2]].to_state == "authorized"

    def test_with_current_state_fills_caches(
        self, make_booking, session_factory, select_counter
    ):
        paid, fresh = make_booking(), make_booking()
        paid.state.transition("pay")
        # fresh copies with empty caches
        with session_factory() as s:
            loaded = s.scalars(select(Booking)).all()

        select_counter.clear()
        with session_factory() as s:
            with_current_state(s, loaded)
        assert len(select_counter) == 1

        by_id = {b.id: b for b in loaded}
        assert by_id[paid.id].state.status is HandleStatus.LOADED
        assert by_id[paid.id].state.current() is BookingStatus.PAID
        assert by_id[fresh.id].state.current() is BookingStatus.PENDING
        # reads above were served from the cache
        assert len(select_counter) == 1

    def test_with_current_state_skips_unsaved(self, make_booking, session_factory):
        draft = Booking(reference="draft")
        saved = make_booking()

        with session_factory() as s:
            result = with_current_state(s, [draft, saved])

        assert result == [draft, saved]
        assert not draft.has_cached_row("state")
        assert saved.has_cached_row("state")

    def test_load_current_state_all_dimensions(self, make_booking, session_factory):
        booking = make_booking()
        booking.payment_state.transition("authorize")
        with session_factory() as s:
            copy = s.get(Booking, booking.id)
            load_current_state(s, copy)

        assert copy.has_cached_row("state")
        assert copy.get_cached_row("state") is None
        assert copy.get_cached_row("payment_state").to_state == "authorized"
        assert copy.payment_state.current() is PaymentStatus.AUTHORIZED

    def test_load_current_state_selected_dimension(self, make_booking, session_factory):
        booking = make_booking()
        with session_factory() as s:
            copy = s.get(Booking, booking.id)
            load_current_state(s, copy, ["payment_state"])

        assert copy.has_cached_row("payment_state")
        assert not copy.has_cached_row("state")


def test_relation_names():
    assert current_state_relation_name("state") == "current_state"
    assert current_state_relation_name("payment_state") == "current_payment_state"
