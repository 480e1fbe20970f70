"""
Tests for picking user-facing error messages and owner notification cooldowns
"""
from datetime import datetime, timedelta, timezone

from assassins.errors import RingBusy, RingError, UNKNOWN_PLAYER
from error_handler import ErrorHandler


class _Wrapped(Exception):
    def __init__(self, original):
        super().__init__(str(original))
        self.original = original


def test_ring_errors_are_shown_to_the_player():
    assert ErrorHandler.user_message(RingBusy()) == RingBusy().message
    assert ErrorHandler.user_message(_Wrapped(RingError(UNKNOWN_PLAYER))) == "This player does not exist in this group."


def test_unexpected_errors_get_a_generic_message():
    assert "bot owner has been notified" in ErrorHandler.user_message(KeyError("boom"))


def test_owner_notifications_are_rate_limited():
    handler = ErrorHandler(bot=None, owner_id=1, notification_cooldown=300)
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert handler.should_notify("KeyError", start)
    assert not handler.should_notify("KeyError", start + timedelta(seconds=10))
    assert handler.should_notify("ValueError", start + timedelta(seconds=10))
    assert handler.should_notify("KeyError", start + timedelta(seconds=301))
    assert handler.error_counts == {"KeyError": 3, "ValueError": 1}
