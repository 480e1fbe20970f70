"""
Tests for the activity feed and leaderboard
"""
from assassins.engine import RingEngine
from assassins.feed import build_feed, leaderboard

from conftest import GROUP, add_players, run


def _engine(storage):
    return RingEngine(storage, GROUP, elimination_dare_policy="inherit", removal_dare_policy="keep")


def test_feed_lists_joins_eliminations_and_game_lifecycle(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed(dares={a: "Steal a sock", b: "Wave", c: "Sing"})
        await engine.eliminate(a)
        await engine.eliminate(a)
        return await build_feed(storage, GROUP)

    items = run(scenario())
    kinds = [item.kind for item in items]
    assert kinds.count("join") == 3
    assert kinds.count("elimination") == 2
    assert kinds.count("game_started") == 1
    assert kinds.count("game_ended") == 1
    texts = [item.text for item in items]
    assert "Ann eliminated Ben with “Steal a sock”" in texts
    assert "Ann eliminated Cat with “Wave”" in texts
    assert "Game ended. Ann wins!" in texts
    assert [item.occurred_at for item in items] == sorted((item.occurred_at for item in items), reverse=True)


def test_feed_skips_reseeds_and_reports_removals(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed()
        await engine.seed([c, b, a])
        await engine.remove_member(b)
        return await build_feed(storage, GROUP)

    items = run(scenario())
    kinds = [item.kind for item in items]
    assert "elimination" not in kinds
    assert kinds.count("removal") == 1
    assert "Ben was removed from the game" in [item.text for item in items]


def test_feed_limit(storage):
    async def scenario():
        await add_players(storage, [f"Player {i}" for i in range(6)])
        return await build_feed(storage, GROUP, limit=4)

    assert len(run(scenario())) == 4


def test_leaderboard_counts_only_credited_eliminations(storage):
    async def scenario():
        a, b, c, d = await add_players(storage, ["Ann", "Ben", "Cat", "Dan"])
        engine = _engine(storage)
        await engine.seed()
        await engine.eliminate(a)   # Ann takes Ben
        await engine.remove_member(c)  # no credit for anyone
        return await leaderboard(storage, GROUP)

    ranked = run(scenario())
    scores = {player.display_name: kills for player, kills in ranked}
    assert scores == {"Ann": 1, "Ben": 0, "Cat": 0, "Dan": 0}
    assert ranked[0][0].display_name == "Ann"
    # Players still in the ring rank ahead of those knocked out on equal kills
    assert ranked[1][0].display_name == "Dan"


def test_feed_keeps_lines_for_every_game(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed()
        await engine.eliminate(a)
        await engine.eliminate(a)   # Ann wins the first game
        await engine.seed()
        await engine.eliminate(b)
        return await build_feed(storage, GROUP)

    items = run(scenario())
    kinds = [item.kind for item in items]
    assert kinds.count("game_started") == 2
    assert kinds.count("game_ended") == 1
    assert kinds.count("elimination") == 3
    assert "Game ended. Ann wins!" in [item.text for item in items]


def test_replaced_ring_closes_its_game_without_winner(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed()
        await engine.seed([c, b, a])
        async with storage.read() as tx:
            return await tx.get_games(GROUP)

    first, second = run(scenario())
    assert first.ended_at is not None
    assert first.winner_player_id is None
    assert second.ended_at is None
