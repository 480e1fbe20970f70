import asyncio

import pytest

from assassins.registry import PlayerRegistry
from assassins.storage import RingStorage

GROUP = "guild-1"


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


async def add_players(storage, names, group_id=GROUP):
    """Add placeholder players and return their ids in join order."""
    registry = PlayerRegistry(storage, group_id)
    ids = []
    for name in names:
        player = await registry.add_player(name)
        ids.append(player.id)
    return ids


@pytest.fixture
def storage(tmp_path):
    ring_storage = RingStorage(str(tmp_path / "ring.db"), busy_timeout=1.0)
    run(ring_storage.initialize())
    return ring_storage
