"""
Tests for the injectable clocks.
"""

from datetime import datetime, timedelta, timezone

import pytest

from erp_kernel.domain.clock import DeterministicClock, SystemClock

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestDeterministicClock:

    def test_frozen_until_advanced(self):
        clock = DeterministicClock(START)
        assert clock.now() == clock.now() == START

    def test_advance_by_timedelta(self):
        clock = DeterministicClock(START)
        clock.advance(timedelta(hours=2))
        assert clock.now() == START + timedelta(hours=2)

    def test_advance_by_seconds(self):
        clock = DeterministicClock(START)
        assert clock.advance() == START + timedelta(seconds=1)
        assert clock.advance(59) == START + timedelta(minutes=1)

    def test_refuses_to_move_backwards(self):
        clock = DeterministicClock(START)
        with pytest.raises(ValueError):
            clock.advance(timedelta(seconds=-1))
        assert clock.now() == START

    def test_default_start_is_utc(self):
        assert DeterministicClock().now().tzinfo is timezone.utc


def test_system_clock_is_timezone_aware():
    assert SystemClock().now().tzinfo is not None
