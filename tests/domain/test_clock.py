"""Tests for the clocks stamping transition rows."""

from datetime import datetime, timedelta, timezone

import pytest

from state_kernel.domain.clock import DEFAULT_START, DeterministicClock, SystemClock


def test_system_clock_is_utc():
    assert SystemClock().now().tzinfo == timezone.utc


class TestDeterministicClock:
    def test_fixed_until_moved(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now() == DEFAULT_START
        clock.advance(90)
        assert clock.now() == DEFAULT_START + timedelta(seconds=90)

    def test_step_stamps_increase(self):
        clock = DeterministicClock(step=timedelta(seconds=1))
        stamps = [clock.now() for _ in range(3)]
        assert stamps == [DEFAULT_START + timedelta(seconds=i) for i in range(3)]
        assert clock.peek() == DEFAULT_START + timedelta(seconds=3)

    def test_set_time(self):
        clock = DeterministicClock()
        instant = datetime(2030, 6, 1, tzinfo=timezone.utc)
        clock.set_time(instant)
        assert clock.now() == instant

    def test_rejects_naive_and_negative(self):
        with pytest.raises(ValueError):
            DeterministicClock().set_time(datetime(2030, 6, 1))
        with pytest.raises(ValueError):
            DeterministicClock(step=timedelta(seconds=-1))
