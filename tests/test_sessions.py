"""
Tests for the session tracker
"""

from datetime import date

import pytest

from navigator.config import SessionConfig
from navigator.sessions import SessionEventType, SessionTracker, SessionWindow


@pytest.fixture
def tracker(clock):
    return SessionTracker(SessionConfig(), clock)


class TestSessionWindow:
    """Test a single time-of-day window"""

    def test_wraps_past_midnight(self):
        window = SessionWindow.from_times('asia', '20:00', '00:00')
        assert window.is_active(20 * 3600)
        assert window.is_active(23 * 3600 + 59 * 60)
        assert not window.is_active(0)
        assert not window.is_active(10 * 3600)

    def test_regular_window(self):
        window = SessionWindow.from_times('london', '02:00', '05:00')
        assert window.is_active(2 * 3600)
        assert not window.is_active(5 * 3600)


class TestOpeningRange:
    """Test opening range tracking"""

    def test_reset_and_widen(self, tracker, bar_at):
        tracker.update(bar_at('09:29', 99, 99.5, 98.5, 99))
        snap = tracker.update(bar_at('09:30', 100, 101, 99, 100.5))
        assert snap.opening_range.high == 101
        assert snap.opening_range.low == 99
        assert snap.has_event(SessionEventType.WINDOW_RESET)

        tracker.update(bar_at('09:31', 100.5, 102, 100, 101.5))
        snap = tracker.update(bar_at('09:44', 101.5, 101.8, 98, 99))
        assert snap.opening_range.high == 102
        assert snap.opening_range.low == 98
        assert snap.opening_range.active

    def test_frozen_after_window(self, tracker, bar_at):
        tracker.update(bar_at('09:30', 100, 101, 99, 100.5))
        snap = tracker.update(bar_at('09:45', 100, 110, 90, 100))
        assert snap.opening_range.high == 101
        assert snap.opening_range.low == 99
        assert not snap.opening_range.active

    def test_no_reset_without_exact_start_bar(self, tracker, bar_at):
        """A feed that skips 09:30:00 leaves the window unset."""
        snap = tracker.update(bar_at('09:31', 100, 101, 99, 100.5))
        assert not snap.opening_range.is_set

    def test_previous_range_held_until_next_reset(self, tracker, bar_at):
        tracker.update(bar_at('09:30', 100, 101, 99, 100.5, day=date(2024, 1, 5)))
        snap = tracker.update(bar_at('09:00', 100, 100, 100, 100))
        assert snap.opening_range.high == 101
        snap = tracker.update(bar_at('09:30', 200, 201, 199, 200))
        assert snap.opening_range.high == 201


class TestSessionEvents:
    """Test session boundary events"""

    def test_open_and_close(self, tracker, bar_at):
        snap = tracker.update(bar_at('09:30', 100, 101, 99, 100))
        assert snap.is_session_open
        assert snap.in_session
        assert not snap.is_session_close

        snap = tracker.update(bar_at('15:59', 100, 101, 99, 100))
        assert snap.in_session
        assert not snap.is_session_close

        snap = tracker.update(bar_at('16:00', 100, 101, 99, 100))
        assert snap.is_session_close
        assert not snap.in_session

    def test_pivot_captured_at_eight(self, tracker, bar_at):
        snap = tracker.update(bar_at('07:59', 1, 1, 1, 1))
        assert snap.pivot is None
        snap = tracker.update(bar_at('08:00', 100, 101, 99, 100.25))
        assert snap.pivot == 100.25
        snap = tracker.update(bar_at('08:01', 100, 105, 99, 104))
        assert snap.pivot == 100.25


class TestLondonSweep:
    """Test London sweep of the Asia range"""

    def test_sweep_high(self, tracker, bar_at):
        prev = date(2024, 1, 7)
        tracker.update(bar_at('20:00', 100, 102, 98, 101, day=prev))
        tracker.update(bar_at('23:00', 101, 103, 99, 102, day=prev))
        snap = tracker.update(bar_at('02:00', 102, 102.5, 101, 102))
        asia = snap.window('asia')
        assert asia.high == 103
        assert asia.low == 98
        assert not snap.london_swept_asia_high

        snap = tracker.update(bar_at('03:00', 102, 104, 101, 103.5))
        assert snap.london_swept_asia_high
        assert not snap.london_swept_asia_low

    def test_reset_clears_everything(self, tracker, bar_at):
        tracker.update(bar_at('08:00', 100, 101, 99, 100))
        tracker.update(bar_at('09:30', 100, 101, 99, 100))
        tracker.reset()
        assert tracker.pivot is None
        assert all(w.high is None for w in tracker.windows.values())
