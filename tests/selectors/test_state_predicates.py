"""Tests for the set-based state predicates."""

import pytest
from sqlalchemy import and_, or_, select

from state_kernel.exceptions import InvalidStateValueError, UnknownDimensionError
from state_kernel.selectors.state_predicates import (
    where_has_no_states,
    where_state_is,
    where_state_is_in,
    where_state_is_not,
    where_state_is_not_in,
    where_state_never_was,
    where_state_was,
)
from tests.support.models import (
    Booking,
    BookingStatus,
    Gadget,
    PaymentStatus,
)


def _refs(session_factory, *criteria) -> set[str]:
    with session_factory() as s:
        return set(s.scalars(select(Booking.reference).where(*criteria)))


@pytest.fixture
def three_bookings(make_booking):
    """A and C untouched, B paid."""
    a = make_booking("A")
    b = make_booking("B")
    c = make_booking("C")
    b.state.transition("pay")
    return a, b, c


@pytest.fixture
def universe(make_booking):
    """Bookings covering every shape of payment history.

    fresh      no rows
    auth       unpaid -> authorized
    voided     unpaid -> authorized -> unpaid
    captured   unpaid -> authorized -> captured
    refunded   unpaid -> authorized -> captured -> refunded
    """
    make_booking("fresh")
    make_booking("auth").payment_state.transition("authorize")

    voided = make_booking("voided")
    voided.payment_state.transition("authorize")
    voided.payment_state.transition("void")

    captured = make_booking("captured")
    captured.payment_state.transition("authorize")
    captured.payment_state.transition("capture")

    refunded = make_booking("refunded")
    for name in ("authorize", "capture", "refund"):
        refunded.payment_state.transition(name)

    return {"fresh", "auth", "voided", "captured", "refunded"}


class TestThreeEntityScenario:
    def test_where_state_is_pending(self, three_bookings, session_factory):
        assert _refs(session_factory, where_state_is(Booking, "state", "pending")) == {"A", "C"}

    def test_where_state_is_paid(self, three_bookings, session_factory):
        assert _refs(session_factory, where_state_is(Booking, "state", "paid")) == {"B"}

    def test_where_state_is_not(self, three_bookings, session_factory):
        assert _refs(
            session_factory, where_state_is_not(Booking, "state", BookingStatus.PENDING)
        ) == {"B"}
        assert _refs(
            session_factory, where_state_is_not(Booking, "state", BookingStatus.PAID)
        ) == {"A", "C"}

    def test_unreached_state_matches_nothing(self, three_bookings, session_factory):
        assert _refs(session_factory, where_state_is(Booking, "state", "failed")) == set()
        assert _refs(
            session_factory, where_state_is_not(Booking, "state", "failed")
        ) == {"A", "B", "C"}


class TestLatestRowSemantics:
    def test_only_latest_row_counts(self, universe, session_factory):
        # passed through authorized but moved on
        assert _refs(
            session_factory, where_state_is(Booking, "payment_state", "authorized")
        ) == {"auth"}

    def test_initial_state_includes_returned_entities(self, universe, session_factory):
        assert _refs(
            session_factory, where_state_is(Booking, "payment_state", PaymentStatus.UNPAID)
        ) == {"fresh", "voided"}

    @pytest.mark.parametrize("value", list(PaymentStatus))
    def test_is_not_is_exact_complement(self, universe, session_factory, value):
        matched = _refs(session_factory, where_state_is(Booking, "payment_state", value))
        unmatched = _refs(session_factory, where_state_is_not(Booking, "payment_state", value))

        assert matched | unmatched == universe
        assert matched & unmatched == set()

    @pytest.mark.parametrize(
        "values",
        [
            [PaymentStatus.UNPAID],
            [PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED],
            ["unpaid", "refunded"],
            list(PaymentStatus),
        ],
    )
    def test_is_not_in_is_exact_complement(self, universe, session_factory, values):
        matched = _refs(session_factory, where_state_is_in(Booking, "payment_state", values))
        unmatched = _refs(
            session_factory, where_state_is_not_in(Booking, "payment_state", values)
        )

        assert matched | unmatched == universe
        assert matched & unmatched == set()

    def test_is_in(self, universe, session_factory):
        assert _refs(
            session_factory,
            where_state_is_in(Booking, "payment_state", ["captured", "refunded"]),
        ) == {"captured", "refunded"}
        assert _refs(
            session_factory,
            where_state_is_in(Booking, "payment_state", ["unpaid", "authorized"]),
        ) == {"fresh", "voided", "auth"}


class TestHistoryPredicates:
    def test_was_ignores_recency(self, universe, session_factory):
        assert _refs(
            session_factory, where_state_was(Booking, "payment_state", "authorized")
        ) == {"auth", "voided", "captured", "refunded"}

    def test_was_initial_state_is_vacuously_true(self, universe, session_factory):
        assert _refs(
            session_factory, where_state_was(Booking, "payment_state", "unpaid")
        ) == universe

    def test_never_was_is_complement(self, universe, session_factory):
        assert _refs(
            session_factory, where_state_never_was(Booking, "payment_state", "captured")
        ) == {"fresh", "auth", "voided"}
        assert _refs(
            session_factory, where_state_never_was(Booking, "payment_state", "unpaid")
        ) == set()

    def test_has_no_states(self, universe, session_factory):
        assert _refs(session_factory, where_has_no_states(Booking, "payment_state")) == {
            "fresh"
        }
        # the other dimension has no rows for anyone
        assert _refs(session_factory, where_has_no_states(Booking, "state")) == universe


class TestComposition:
    def test_or_across_dimensions(self, universe, make_booking, session_factory):
        make_booking("paid").state.transition("pay")

        assert _refs(
            session_factory,
            or_(
                where_state_is(Booking, "state", "paid"),
                where_state_is(Booking, "payment_state", "refunded"),
            ),
        ) == {"paid", "refunded"}

    def test_and_with_plain_filters(self, universe, session_factory):
        assert _refs(
            session_factory,
            and_(
                where_state_was(Booking, "payment_state", "authorized"),
                where_state_is_not(Booking, "payment_state", "authorized"),
                Booking.reference != "refunded",
            ),
        ) == {"voided", "captured"}

    def test_negated_predicate(self, universe, session_factory):
        assert _refs(
            session_factory, ~where_state_is(Booking, "payment_state", "unpaid")
        ) == {"auth", "captured", "refunded"}


class TestPredicateValidation:
    def test_undeclared_value(self, tables):
        with pytest.raises(InvalidStateValueError):
            where_state_is(Booking, "state", "shipped")

    def test_unknown_dimension(self, tables):
        with pytest.raises(UnknownDimensionError):
            where_state_is(Booking, "shipping_state", "pending")
        with pytest.raises(UnknownDimensionError):
            where_has_no_states(Booking, "shipping_state")


class TestOtherHosts:
    def test_integer_keys_and_owner_type(self, make_gadget, make_booking, session_factory):
        idle = make_gadget("idle")
        running = make_gadget("running")
        running.status.transition("start")
        # a booking row must not leak into gadget queries
        make_booking("noise").state.transition("pay")

        with session_factory() as s:
            labels = set(
                s.scalars(select(Gadget.label).where(where_state_is(Gadget, "status", "running")))
            )
            idle_labels = set(
                s.scalars(select(Gadget.label).where(where_state_is(Gadget, "status", "idle")))
            )

        assert labels == {"running"}
        assert idle_labels == {idle.label}
