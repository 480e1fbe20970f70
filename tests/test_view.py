"""
Tests for parsing admin ring text and formatting feed lines
"""
import pytest

from assassins.models import REASON_ELIMINATED, REASON_REMOVED, REASON_RESEED, RingEvent
from assassins.view import RingView, parse_ring_text

NAMES = {"a": "Ann", "b": "Ben", "c": "Cat"}


def _event(kind, departed, target="b"):
    return RingEvent(kind=kind, assignment_id=1, assassin_player_id="a", target_player_id=target,
                     dare_text="Wave", occurred_at=0, departed_player_id=departed)


def test_parse_ring_text():
    text = "Ann > Ben : Steal a sock; Ben > Cat\nCat>Ann:  "
    assert parse_ring_text(text) == [
        ("Ann", "Ben", "Steal a sock"),
        ("Ben", "Cat", ""),
        ("Cat", "Ann", ""),
    ]


def test_parse_ring_text_keeps_colons_in_dares():
    assert parse_ring_text("Ann > Ben : Say: hello") == [("Ann", "Ben", "Say: hello")]


@pytest.mark.parametrize("text", ["Ann Ben", "> Ben", "Ann >", "Ann > Ben; oops"])
def test_parse_ring_text_rejects_bad_entries(text):
    with pytest.raises(ValueError):
        parse_ring_text(text)


def test_format_event_only_reports_departures():
    view = RingView(storage=None, engine=None, guild_id="g")
    assert view.format_event(_event(REASON_ELIMINATED, "b"), NAMES) == "🗡️ **Ann** eliminated **Ben** with “Wave”"
    assert view.format_event(_event(REASON_REMOVED, "b"), NAMES) == "🚪 **Ben** was removed from the game"
    # The victim's own outgoing edge is closed too but is not news
    assert view.format_event(_event(REASON_ELIMINATED, "a", target="c"), NAMES) is None
    assert view.format_event(_event(REASON_RESEED, None), NAMES) is None
