"""
Tests for ring mutations: seeding, reseeding, eliminations and removals
"""
import asyncio
import random

from assassins import errors
from assassins.config import DEFAULT_DARE
from assassins.dares import DareTemplates
from assassins.engine import (
    RingEngine, STATUS_ELIMINATED, STATUS_HUNTING, STATUS_REMOVED, STATUS_WAITING, STATUS_WON,
)
from assassins.feed import leaderboard
from assassins.locks import get_group_lock
from assassins.models import REASON_ELIMINATED, REASON_REMOVED, REASON_RESEED, RingEdge, STATUS_ENDED

from conftest import GROUP, add_players, run


def _engine(storage, **kwargs):
    kwargs.setdefault("elimination_dare_policy", "inherit")
    kwargs.setdefault("removal_dare_policy", "keep")
    kwargs.setdefault("rng", random.Random(3))
    return RingEngine(storage, GROUP, **kwargs)


async def _pairs(engine):
    return dict(await engine.get_ring_pairs())


def test_seed_links_players_in_join_order(storage):
    async def scenario():
        a, b, c, d = await add_players(storage, ["Ann", "Ben", "Cat", "Dan"])
        engine = _engine(storage)
        result = await engine.seed()
        return (a, b, c, d), result, await engine.get_ring_pairs(), await engine.audit()

    (a, b, c, d), result, pairs, report = run(scenario())
    assert result.success
    assert result.version == 1
    assert pairs == [(a, b), (b, c), (c, d), (d, a)]
    assert all(edge.dare_text == DEFAULT_DARE for edge in result.edges)
    assert report.valid
    assert report.details["state"] == "ring"
    assert report.details["order"] == [a, b, c, d]


def test_seed_random_subsets_always_audit_clean(storage):
    rng = random.Random(11)

    async def scenario():
        ids = await add_players(storage, [f"Player {i}" for i in range(10)])
        engine = _engine(storage)
        reports = []
        for _ in range(8):
            chosen = rng.sample(ids, rng.randint(2, len(ids)))
            result = await engine.seed(chosen)
            assert result.success
            report = await engine.audit()
            active = {p.id for p in await storage.get_active_players(GROUP)}
            reports.append((set(chosen), active, report))
        return reports

    for chosen, active, report in run(scenario()):
        assert report.valid
        assert active == chosen
        assert set(report.details["order"]) == chosen


def test_seed_uses_templates_and_explicit_dares(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        await DareTemplates(storage, GROUP).add("Take a selfie with your target")
        result = await _engine(storage).seed([a, b, c], dares={a: "Custom dare"})
        return (a, b, c), {edge.assassin_player_id: edge.dare_text for edge in result.edges}

    (a, b, c), dares = run(scenario())
    assert dares[a] == "Custom dare"
    assert dares[b] == "Take a selfie with Cat"
    assert dares[c] == "Take a selfie with Ann"


def test_seed_needs_two_players(storage):
    async def scenario():
        (a,) = await add_players(storage, ["Ann"])
        engine = _engine(storage)
        return await engine.seed(), await engine.seed([a, a]), await engine.get_version()

    default, duplicated, version = run(scenario())
    assert default.error == errors.INSUFFICIENT_PLAYERS
    assert duplicated.error == errors.INSUFFICIENT_PLAYERS
    assert version == 0


def test_seed_rejects_unknown_player(storage):
    async def scenario():
        (a,) = await add_players(storage, ["Ann"])
        return await _engine(storage).seed([a, "nobody"])

    assert run(scenario()).error == errors.UNKNOWN_PLAYER


def test_reseeding_closes_previous_ring(storage):
    async def scenario():
        a, b, c, d = await add_players(storage, ["Ann", "Ben", "Cat", "Dan"])
        engine = _engine(storage)
        await engine.seed()
        result = await engine.reseed([RingEdge(a, c, "Dare one"), RingEdge(c, a, "Dare two")])
        active = [p.id for p in await storage.get_active_players(GROUP)]
        return (a, b, c, d), result, await _pairs(engine), active, await engine.audit()

    (a, b, c, d), result, pairs, active, report = run(scenario())
    assert result.success
    assert result.version == 2
    assert pairs == {a: c, c: a}
    assert sorted(active) == sorted([a, c])
    assert len(result.events) == 4
    assert all(event.kind == REASON_RESEED for event in result.events)
    assert report.valid


def test_invalid_reseed_changes_nothing(storage):
    async def scenario():
        a, b, c, d = await add_players(storage, ["Ann", "Ben", "Cat", "Dan"])
        engine = _engine(storage)
        await engine.seed()
        before = await _pairs(engine)
        fragmented = await engine.reseed([RingEdge(a, b), RingEdge(b, a), RingEdge(c, d), RingEdge(d, c)])
        duplicate = await engine.reseed([RingEdge(a, b), RingEdge(a, c), RingEdge(b, a)])
        selfish = await engine.reseed([RingEdge(a, a), RingEdge(b, c), RingEdge(c, b)])
        unknown = await engine.reseed([RingEdge(a, "ghost"), RingEdge("ghost", a)])
        mismatched = await engine.reseed_arrays([a, b, c], [b, c])
        results = [fragmented, duplicate, selfish, unknown, mismatched]
        return before, await _pairs(engine), await engine.get_version(), results

    before, after, version, results = run(scenario())
    assert [r.error for r in results] == [
        errors.FRAGMENTED_RING, errors.DUPLICATE_ASSASSIN, errors.SELF_TARGET,
        errors.UNKNOWN_PLAYER, errors.MISSING_TARGET,
    ]
    assert not any(r.success for r in results)
    assert after == before
    assert version == 1


def test_reseed_arrays(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        result = await engine.reseed_arrays([a, b, c], [c, a, b], ["x"])
        return (a, b, c), result

    (a, b, c), result = run(scenario())
    assert result.success
    dares = {edge.assassin_player_id: edge.dare_text for edge in result.edges}
    assert dares == {a: "x", b: "", c: ""}


def test_full_game_from_seed_to_winner(storage):
    """Ann > Ben > Cat > Dan > Ann, played down to a single winner"""
    async def scenario():
        a, b, c, d = await add_players(storage, ["Ann", "Ben", "Cat", "Dan"])
        engine = _engine(storage)
        await engine.seed(dares={a: "Dare A", b: "Dare B", c: "Dare C", d: "Dare D"})

        first = await engine.eliminate(a)
        after_first = await _pairs(engine)
        removed = await engine.remove_member(c)
        after_removal = await _pairs(engine)
        last = await engine.eliminate(d)

        statuses = {pid: await engine.assignment_status(pid) for pid in (a, b, c, d)}
        return (a, b, c, d), first, after_first, removed, after_removal, last, statuses, engine

    (a, b, c, d), first, after_first, removed, after_removal, last, statuses, engine = run(scenario())

    assert first.success
    assert first.victim_id == b
    assert after_first == {a: c, c: d, d: a}
    assert first.new_assignment.dare_text == "Dare B"
    assert {e.departed_player_id for e in first.events} == {b}
    assert {e.kind for e in first.events} == {REASON_ELIMINATED}

    assert removed.success
    assert after_removal == {a: d, d: a}
    # Ann kept the dare she inherited from Ben
    assert removed.edges[0].dare_text == "Dare B"
    assert {e.kind for e in removed.events} == {REASON_REMOVED}

    assert last.success and last.game_over
    assert last.winner_id == d
    assert last.new_assignment is None
    assert run(engine.check_game_end()) == d
    assert run(engine.get_ring()) == []

    report = run(engine.audit())
    assert report.valid
    assert report.details["state"] == "ended"

    assert statuses == {a: STATUS_ELIMINATED, b: STATUS_ELIMINATED, c: STATUS_REMOVED, d: STATUS_WON}


def test_elimination_records_replacement_links(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed()
        result = await engine.eliminate(a)
        closed = await storage.get_closed_edges(GROUP, reasons=[REASON_ELIMINATED])
        return result, closed

    result, closed = run(scenario())
    assert len(closed) == 2
    assert {edge.replaced_by_assignment_id for edge in closed} == {result.new_assignment.id}


def test_reassign_policy_draws_a_fresh_dare(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage, elimination_dare_policy="reassign")
        await engine.seed(dares={a: "one", b: "two", c: "three"})
        await DareTemplates(storage, GROUP).add("Bow to your target")
        return await engine.eliminate(a)

    result = run(scenario())
    assert result.new_assignment.dare_text == "Bow to Cat"


def test_removal_inherit_policy(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage, removal_dare_policy="inherit")
        await engine.seed(dares={a: "one", b: "two", c: "three"})
        return (a, c), await engine.remove_member(b)

    (a, c), result = run(scenario())
    edge = result.edges[0]
    assert (edge.assassin_player_id, edge.target_player_id, edge.dare_text) == (a, c, "two")


def test_two_player_removal_needs_end_game(storage):
    async def scenario():
        a, b = await add_players(storage, ["Ann", "Ben"])
        engine = _engine(storage)
        await engine.seed()
        refused = await engine.remove_member(a)
        pairs = await _pairs(engine)
        ended = await engine.remove_member(a, end_game=True)
        return (a, b), refused, pairs, ended, await engine.audit()

    (a, b), refused, pairs, ended, report = run(scenario())
    assert refused.error == errors.RING_TOO_SMALL
    assert pairs == {a: b, b: a}
    assert ended.success and ended.game_over
    assert ended.winner_id == b
    assert report.valid


def test_removal_with_leave_group(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed()
        result = await engine.remove_member(b, leave_group=True)
        return result, await storage.get_player(GROUP, b)

    result, player = run(scenario())
    assert result.success
    assert not player.is_active
    assert player.removed_at is not None


def test_winner_can_leave_finished_game(storage):
    async def scenario():
        a, b = await add_players(storage, ["Ann", "Ben"])
        engine = _engine(storage)
        await engine.seed()
        await engine.eliminate(a)
        return await engine.remove_member(a, leave_group=True), await engine.audit()

    result, report = run(scenario())
    assert result.success
    assert not result.game_over
    assert result.events == []
    assert report.valid


def test_mutations_reject_players_outside_the_ring(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed([a, b])
        return [
            await engine.eliminate(c),
            await engine.remove_member(c),
            await engine.remove_member("ghost"),
            await engine.edit_dare(c, "new"),
        ]

    results = run(scenario())
    assert [r.error for r in results] == [
        errors.NO_ACTIVE_ASSIGNMENT, errors.NOT_ACTIVE, errors.UNKNOWN_PLAYER, errors.NO_ACTIVE_ASSIGNMENT,
    ]


def test_edit_dare(storage):
    async def scenario():
        a, b = await add_players(storage, ["Ann", "Ben"])
        engine = _engine(storage)
        await engine.seed()
        result = await engine.edit_dare(a, "  Sing a song  ")
        return result, await engine.get_current_assignment(a)

    result, current = run(scenario())
    assert result.success
    assert result.version == 2
    assert current.dare_text == "Sing a song"
    assert current.target_display_name == "Ben"


def test_stale_version_is_a_conflict(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        seeded = await engine.seed()
        stale = await engine.eliminate(a, expected_version=seeded.version - 1)
        fresh = await engine.eliminate(a, expected_version=seeded.version)
        return stale, fresh

    stale, fresh = run(scenario())
    assert stale.error == errors.CONFLICT
    assert fresh.success


def test_held_lock_reports_busy(storage):
    async def scenario():
        await add_players(storage, ["Ann", "Ben"])
        engine = _engine(storage, lock_timeout=0.05)
        lock = get_group_lock(storage.db_path, GROUP)
        await lock.acquire()
        try:
            blocked = await engine.seed()
        finally:
            lock.release()
        return blocked, await engine.seed()

    blocked, retried = run(scenario())
    assert blocked.error == errors.BUSY
    assert retried.success


def test_failed_audit_rolls_mutation_back(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed([a, b], dares={a: "original", b: "original"})
        # Corrupt the ring: Cat is marked active without any assignment
        async with storage.transaction() as tx:
            await tx.set_player_active(GROUP, c, True)
        result = await engine.edit_dare(a, "changed")
        return result, await engine.get_current_assignment(a), await engine.get_version()

    result, current, version = run(scenario())
    assert result.error == errors.INTEGRITY
    assert current.dare_text == "original"
    assert version == 1


def test_assignment_status_for_waiting_and_hunting_players(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed([a, b])
        return await engine.assignment_status(a), await engine.assignment_status(c)

    assert run(scenario()) == (STATUS_HUNTING, STATUS_WAITING)


def test_events_are_kept_as_history(storage):
    async def scenario():
        a, b, c = await add_players(storage, ["Ann", "Ben", "Cat"])
        engine = _engine(storage)
        await engine.seed()
        await engine.eliminate(a)
        await engine.seed([a, c])
        return await engine.get_events(), await storage.get_group(GROUP)

    events, group = run(scenario())
    kinds = [event.kind for event in events]
    assert kinds.count(REASON_ELIMINATED) == 2
    assert kinds.count(REASON_RESEED) == 2
    assert group.status != STATUS_ENDED


def test_eliminating_any_assassin_keeps_a_single_ring(storage):
    """Random assassins in rings of 3 to 9 players eliminate until two remain"""
    rng = random.Random(5)

    async def scenario():
        steps = []
        for size in range(3, 10):
            ids = await add_players(storage, [f"Ring {size} player {i}" for i in range(size)])
            engine = _engine(storage)
            await engine.seed(ids)
            while True:
                before = await _pairs(engine)
                if len(before) <= 2:
                    break
                killer = rng.choice(sorted(before))
                result = await engine.eliminate(killer)
                steps.append((before, killer, result, await _pairs(engine), await engine.audit()))
        return steps

    steps = run(scenario())
    assert len(steps) == sum(size - 2 for size in range(3, 10))
    for before, killer, result, after, report in steps:
        victim = before[killer]
        assert result.success and not result.game_over
        assert result.victim_id == victim
        assert after[killer] == before[victim]
        assert victim not in after
        assert victim not in after.values()
        assert len(after) == len(before) - 1
        assert report.valid
        assert set(report.details["order"]) == set(after)


def test_overlapping_eliminations_do_not_both_succeed(storage):
    """Ann and Ben hunt each other and both report at the same moment"""
    async def scenario():
        a, b = await add_players(storage, ["Ann", "Ben"])
        await _engine(storage).seed()
        results = await asyncio.gather(_engine(storage).eliminate(a), _engine(storage).eliminate(b))
        return results, await _engine(storage).audit()

    results, report = run(scenario())
    winners = [r for r in results if r.success]
    losers = [r for r in results if not r.success]
    assert len(winners) == 1
    assert winners[0].game_over
    assert [r.error for r in losers] == [errors.NO_ACTIVE_ASSIGNMENT]
    assert report.valid
    assert report.details["state"] == "ended"


def test_removing_a_player_splices_their_hunter_without_credit(storage):
    """Ann > Ben > Cat > Dan > Ann, then Cat leaves"""
    async def scenario():
        a, b, c, d = await add_players(storage, ["Ann", "Ben", "Cat", "Dan"])
        engine = _engine(storage)
        await engine.seed()
        result = await engine.remove_member(c)
        closed = await storage.get_closed_edges(GROUP, reasons=[REASON_REMOVED])
        board = await leaderboard(storage, GROUP)
        return (a, b, c, d), result, await _pairs(engine), closed, board, await engine.assignment_status(c)

    (a, b, c, d), result, pairs, closed, board, status = run(scenario())
    assert result.success
    assert pairs == {a: b, b: d, d: a}
    assert {(e.assassin_player_id, e.target_player_id) for e in closed} == {(b, c), (c, d)}
    assert {e.departed_player_id for e in closed} == {c}
    assert {e.kind for e in result.events} == {REASON_REMOVED}
    assert all(kills == 0 for _, kills in board)
    assert status == STATUS_REMOVED
