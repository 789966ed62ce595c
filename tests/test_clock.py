"""Tests for server clock offset estimation."""

import time
from datetime import timezone

from streamcache.clock import ClockSync


class FakeTime:
    """Controllable local clock."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestClockSync:
    """Test ClockSync."""

    def test_initial_state(self):
        """Test that a fresh clock has no offset."""
        clock = ClockSync()
        assert clock.delta_time == 0.0
        assert clock.server_time == 0.0

    def test_observe_sets_delta(self):
        """Test delta = server time - local time at observation."""
        local = FakeTime(900.0)
        clock = ClockSync(time_fn=local)

        clock.observe(1000.0)

        assert clock.server_time == 1000.0
        assert clock.delta_time == 100.0

    def test_observe_none_keeps_delta(self):
        """Test that a response without timing info changes nothing."""
        local = FakeTime(900.0)
        clock = ClockSync(time_fn=local)
        clock.observe(1000.0)

        local.now = 950.0
        clock.observe(None)

        assert clock.delta_time == 100.0
        assert clock.server_time == 1000.0

    def test_new_observation_replaces_estimate(self):
        """Test that each observation replaces the previous one."""
        local = FakeTime(900.0)
        clock = ClockSync(time_fn=local)
        clock.observe(1000.0)

        local.now = 2000.0
        clock.observe(1990.0)

        assert clock.delta_time == -10.0

    def test_to_local_time_ignores_argument(self):
        """Test that to_local_time returns now + delta whatever it is given."""
        local = FakeTime(900.0)
        clock = ClockSync(time_fn=local)
        clock.observe(1000.0)

        local.now = 905.0
        assert clock.to_local_time() == 1005.0
        assert clock.to_local_time(12345.0) == 1005.0

    def test_to_local_time_with_real_clock(self):
        """Test the delta property against the system clock."""
        clock = ClockSync()
        before = time.time()
        clock.observe(1000.0)

        result = clock.to_local_time(42.0)
        expected = time.time() + (1000.0 - before)

        assert abs(result - expected) < 1.0

    def test_to_local_datetime(self):
        """Test conversion to a UTC datetime."""
        clock = ClockSync(time_fn=FakeTime(0.0))
        clock.observe(86400.0)

        dt = clock.to_local_datetime()

        assert dt.tzinfo == timezone.utc
        assert (dt.year, dt.month, dt.day) == (1970, 1, 2)
