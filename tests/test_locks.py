"""
Tests for the per-group ring locks
"""
import gc

from assassins.locks import _group_locks, get_group_lock


def test_same_group_shares_one_lock():
    lock = get_group_lock("ring.db", "guild-1")
    assert get_group_lock("ring.db", "guild-1") is lock
    assert get_group_lock("ring.db", "guild-2") is not lock
    assert get_group_lock("other.db", "guild-1") is not lock


def test_unused_locks_are_dropped():
    get_group_lock("ring.db", "finished-guild")
    gc.collect()
    assert ("ring.db", "finished-guild") not in _group_locks
