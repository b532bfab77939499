"""Tests for the build-once state definition registry."""

import threading

from state_kernel.domain.definition import StateType
from state_kernel.domain.registry import StateRegistry
from tests.support.models import BookingState, PaymentState, PaymentStatus


def _counting_state_type(calls: list) -> type[StateType]:
    class Counted(StateType):
        values = PaymentStatus
        initial_state = PaymentStatus.UNPAID

        @classmethod
        def config(cls, builder):
            calls.append(threading.get_ident())
            builder.register("authorize").from_(PaymentStatus.UNPAID).to(
                PaymentStatus.AUTHORIZED
            )

    return Counted


class TestStateRegistry:
    def test_same_definition_returned(self):
        registry = StateRegistry()
        first = registry.definition_for(BookingState)
        assert registry.definition_for(BookingState) is first

    def test_types_are_independent(self):
        registry = StateRegistry()
        booking = registry.definition_for(BookingState)
        payment = registry.definition_for(PaymentState)
        assert booking is not payment
        assert booking.state_type is BookingState
        assert payment.state_type is PaymentState

    def test_initialize_builds_eagerly(self):
        registry = StateRegistry()
        assert BookingState not in registry
        registry.initialize(BookingState, PaymentState)
        assert BookingState in registry
        assert PaymentState in registry

    def test_config_runs_once(self):
        calls: list = []
        counted = _counting_state_type(calls)
        registry = StateRegistry()
        registry.definition_for(counted)
        registry.definition_for(counted)
        registry.initialize(counted)
        assert len(calls) == 1

    def test_concurrent_first_requests_build_once(self):
        calls: list = []
        counted = _counting_state_type(calls)
        registry = StateRegistry()
        barrier = threading.Barrier(8)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            definition = registry.definition_for(counted)
            with results_lock:
                results.append(definition)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert len(results) == 8
        assert all(r is results[0] for r in results)

    def test_build_is_logged(self, captured_logs):
        registry = StateRegistry()
        registry.definition_for(BookingState)
        registry.definition_for(BookingState)

        built = [r for r in captured_logs() if r["message"] == "state_definition_built"]
        assert len(built) == 1
        assert built[0]["state_type"] == "BookingState"
        assert built[0]["state_count"] == 3
        assert built[0]["transition_count"] == 2
