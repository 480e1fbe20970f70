"""Ring mutations for the assassin game.

Every state change to a group's ring goes through RingEngine: the
per-group lock is taken, the current ring is read, a candidate is built
and validated, and the result is written in a single transaction. Any
failure rolls the whole mutation back and is reported as a result with
an error code rather than raised.
"""

import logging
import random
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Sequence, Tuple

from . import errors
from .auditor import audit_ring, audit_transaction
from .config import (
    AUDIT_AFTER_MUTATION, ELIMINATION_DARE_POLICY,
    LOCK_TIMEOUT_SECONDS, REMOVAL_DARE_POLICY,
)
from .dares import elimination_dare, pick_dare, removal_dare
from .errors import RingConflict, RingError, RingIntegrityError, RingValidationError
from .locks import group_lock
from .models import (
    Assignment, AuditReport, CurrentAssignment, EliminationResult, Group, RingEdge,
    RingEvent, RingResult, REASON_ELIMINATED, REASON_REMOVED, REASON_RESEED, STATUS_ENDED,
)
from .storage import RingStorage, RingTransaction
from .timeutils import timestamp
from .validator import cycle_order, validate_edges

logger = logging.getLogger(__name__)

# What a player's assignment screen should show
STATUS_HUNTING = "hunting"
STATUS_WON = "won"
STATUS_ELIMINATED = "eliminated"
STATUS_REMOVED = "removed"
STATUS_WAITING = "waiting"


def to_event(assignment: Assignment) -> RingEvent:
    """Describe a closed edge as a timestamped fact for feed subscribers."""
    return RingEvent(
        kind=assignment.reason_closed,
        assignment_id=assignment.id,
        assassin_player_id=assignment.assassin_player_id,
        target_player_id=assignment.target_player_id,
        dare_text=assignment.dare_text,
        occurred_at=assignment.closed_at,
        departed_player_id=assignment.departed_player_id
    )


class _MutationScope:
    """State shared between a mutation body and the wrapper committing it."""

    def __init__(self, tx: RingTransaction, group: Group):
        self.tx = tx
        self.group = group
        self.version = None


class RingEngine:
    """Builds, mutates and verifies one group's ring."""

    def __init__(self, storage: RingStorage, group_id: str,
                 elimination_dare_policy: str = ELIMINATION_DARE_POLICY,
                 removal_dare_policy: str = REMOVAL_DARE_POLICY,
                 audit_after_mutation: bool = AUDIT_AFTER_MUTATION,
                 lock_timeout: float = LOCK_TIMEOUT_SECONDS,
                 rng: random.Random = None):
        self.storage = storage
        self.group_id = group_id
        self.elimination_dare_policy = elimination_dare_policy
        self.removal_dare_policy = removal_dare_policy
        self.audit_after_mutation = audit_after_mutation
        self.lock_timeout = lock_timeout
        self.rng = rng or random.Random()

    @asynccontextmanager
    async def _mutation(self, operation: str, expected_version: Optional[int] = None):
        """Serialize, open a transaction, and on success bump the version and re-audit."""
        async with group_lock(self.storage.db_path, self.group_id, self.lock_timeout):
            async with self.storage.transaction() as tx:
                group = await tx.ensure_group(self.group_id)
                if expected_version is not None and group.version != expected_version:
                    raise RingConflict(
                        f"The ring was changed by someone else (version {group.version}, expected {expected_version}). "
                        "Reload and try again."
                    )

                scope = _MutationScope(tx, group)
                yield scope

                scope.version = await tx.bump_version(self.group_id)
                if self.audit_after_mutation:
                    report = await audit_transaction(tx, self.group_id)
                    if not report.valid:
                        logger.error(
                            f"{operation} produced an invalid ring in group {self.group_id}: "
                            f"{report.reason} {report.details}"
                        )
                        raise RingIntegrityError(
                            f"The ring failed its integrity check ({report.reason}). The change was not applied."
                        )

        logger.info(f"{operation} committed for group {self.group_id} at version {scope.version}")

    def _failure(self, operation: str, error: RingError, result_cls=RingResult) -> RingResult:
        if error.code in (errors.BUSY, errors.CONFLICT):
            logger.warning(f"{operation} for group {self.group_id} hit contention: {error.code}")
        else:
            logger.info(f"{operation} rejected for group {self.group_id}: {error.code}")
        return result_cls(False, error.message, error=error.code)

    async def _names(self, tx: RingTransaction) -> Dict[str, str]:
        return {p.id: p.display_name for p in await tx.get_players(self.group_id)}

    async def _fresh_dare(self, tx: RingTransaction, target_name: Optional[str]) -> str:
        templates = await tx.get_dare_templates(self.group_id)
        return pick_dare(templates, target_name, self.rng)

    async def _replace_ring(self, tx: RingTransaction, edges: List[RingEdge], now: int) -> Tuple[List[Assignment], List[Assignment]]:
        """Close every active edge as a reseed and install edges as the new ring."""
        closed = await tx.close_all_active(self.group_id, REASON_RESEED, now)
        await tx.set_ring_members(self.group_id, [edge.assassin for edge in edges])
        created = []
        for edge in edges:
            created.append(await tx.insert_assignment(self.group_id, edge.assassin, edge.target, edge.dare, now))
        await tx.start_game(self.group_id, now)
        return closed, created

    # Seeding

    async def seed(self, player_ids: Optional[Sequence[str]] = None,
                   dares: Optional[Dict[str, str]] = None,
                   expected_version: Optional[int] = None) -> RingResult:
        """Start a ring where each player hunts the next one in order.

        Without player_ids every current group member is seeded in join
        order. Dares come from the dares mapping (by assassin), else from
        the group's templates, else the default dare.
        """
        try:
            async with self._mutation("seed", expected_version) as scope:
                tx = scope.tx
                if player_ids is None:
                    players = await tx.get_players(self.group_id, include_removed=False)
                    ids = [p.id for p in players]
                else:
                    ids = list(dict.fromkeys(player_ids))
                    for player_id in ids:
                        player = await tx.get_player(self.group_id, player_id)
                        if not player:
                            raise RingError(errors.UNKNOWN_PLAYER, f"Unknown player: {player_id}")
                        if player.removed_at is not None:
                            raise RingError(errors.UNKNOWN_PLAYER, f"{player.display_name} has left the group.")

                if len(ids) < 2:
                    raise RingError(errors.INSUFFICIENT_PLAYERS)

                targets = ids[1:] + ids[:1]
                names = await self._names(tx)
                templates = await tx.get_dare_templates(self.group_id)
                edges = []
                for assassin_id, target_id in zip(ids, targets):
                    if dares and dares.get(assassin_id):
                        dare = dares[assassin_id]
                    else:
                        dare = pick_dare(templates, names.get(target_id), self.rng)
                    edges.append(RingEdge(assassin_id, target_id, dare))

                check = validate_edges(edges)
                if not check.ok:
                    raise RingValidationError(check.reason)

                closed, created = await self._replace_ring(tx, edges, timestamp())
        except RingError as e:
            return self._failure("seed", e)

        return RingResult(
            True,
            f"Ring seeded with {len(created)} players.",
            version=scope.version,
            edges=created,
            events=[to_event(a) for a in closed]
        )

    async def reseed(self, edges: Sequence[RingEdge], expected_version: Optional[int] = None) -> RingResult:
        """Replace the ring with an admin-chosen mapping.

        The listed assassins become exactly the ring's players; everyone
        else in the group is taken out of the ring. Nothing is written
        unless the whole mapping is a single valid cycle.
        """
        edges = [RingEdge(e.assassin, e.target, (e.dare or "").strip()) for e in edges]
        assassins = [edge.assassin for edge in edges]

        if len(set(assassins)) != len(assassins):
            return self._failure("reseed", RingValidationError(errors.DUPLICATE_ASSASSIN))
        if len(edges) < 2:
            return self._failure("reseed", RingError(errors.INSUFFICIENT_PLAYERS))
        check = validate_edges(edges)
        if not check.ok:
            return self._failure("reseed", RingValidationError(check.reason))

        try:
            async with self._mutation("reseed", expected_version) as scope:
                tx = scope.tx
                for player_id in assassins:
                    if not await tx.get_player(self.group_id, player_id):
                        raise RingError(errors.UNKNOWN_PLAYER, f"Unknown player: {player_id}")

                closed, created = await self._replace_ring(tx, edges, timestamp())
        except RingError as e:
            return self._failure("reseed", e)

        return RingResult(
            True,
            f"Ring reseeded with {len(created)} players.",
            version=scope.version,
            edges=created,
            events=[to_event(a) for a in closed]
        )

    async def reseed_arrays(self, assassins: Sequence[str], targets: Sequence[str],
                            dares: Sequence[str] = (), expected_version: Optional[int] = None) -> RingResult:
        """Reseed from parallel assassin/target/dare lists."""
        if len(assassins) != len(targets):
            return self._failure("reseed", RingValidationError(errors.MISSING_TARGET))
        dares = list(dares) + [""] * (len(assassins) - len(dares))
        edges = [RingEdge(a, t, d) for a, t, d in zip(assassins, targets, dares)]
        return await self.reseed(edges, expected_version)

    # Splicing

    async def eliminate(self, assassin_id: str, expected_version: Optional[int] = None) -> EliminationResult:
        """Record that assassin_id completed their dare on their target.

        The victim leaves the ring and the assassin inherits the victim's
        target. When the victim was hunting the assassin, the assassin is
        the last player standing and the game ends.
        """
        try:
            async with self._mutation("eliminate", expected_version) as scope:
                tx = scope.tx
                edge = await tx.get_active_edge_for_assassin(self.group_id, assassin_id)
                if not edge:
                    raise RingError(errors.NO_ACTIVE_ASSIGNMENT)

                victim_id = edge.target_player_id
                victim_edge = await tx.get_active_edge_for_assassin(self.group_id, victim_id)
                if not victim_edge:
                    raise RingIntegrityError(f"Target {victim_id} has no active assignment; the ring is broken.")
                next_id = victim_edge.target_player_id

                now = timestamp()
                await tx.close_assignment(edge, REASON_ELIMINATED, now, departed_player_id=victim_id)
                await tx.close_assignment(victim_edge, REASON_ELIMINATED, now, departed_player_id=victim_id)
                await tx.set_player_active(self.group_id, victim_id, False)

                names = await self._names(tx)
                new_edge = None
                game_over = next_id == assassin_id
                if game_over:
                    await tx.end_game(self.group_id, assassin_id, now)
                else:
                    fresh = ""
                    if self.elimination_dare_policy != "inherit":
                        fresh = await self._fresh_dare(tx, names.get(next_id))
                    dare = elimination_dare(self.elimination_dare_policy, victim_edge, fresh)
                    new_edge = await tx.insert_assignment(self.group_id, assassin_id, next_id, dare, now)
                    await tx.set_replaced_by([edge, victim_edge], new_edge.id)
        except RingError as e:
            return self._failure("eliminate", e, EliminationResult)

        victim_name = names.get(victim_id, victim_id)
        if game_over:
            message = f"{victim_name} has been eliminated. You are the last one standing and win the game!"
        else:
            message = f"{victim_name} has been eliminated. Your new target is {names.get(next_id, next_id)}."

        return EliminationResult(
            True,
            message,
            version=scope.version,
            edges=[new_edge] if new_edge else [],
            events=[to_event(edge), to_event(victim_edge)],
            game_over=game_over,
            winner_id=assassin_id if game_over else None,
            victim_id=victim_id,
            new_assignment=new_edge
        )

    async def remove_member(self, removed_id: str, end_game: bool = False, leave_group: bool = False,
                            expected_version: Optional[int] = None) -> RingResult:
        """Take a player out of the ring without crediting anyone with an elimination.

        Their hunter is spliced onto their target. A two-player ring cannot
        shrink further; pass end_game=True to remove the player anyway and
        end the game with the other player as winner. With leave_group the
        player also leaves the group in the same transaction.
        """
        try:
            async with self._mutation("remove_member", expected_version) as scope:
                tx = scope.tx
                player = await tx.get_player(self.group_id, removed_id)
                if not player:
                    raise RingError(errors.UNKNOWN_PLAYER)
                if not player.is_active:
                    raise RingError(errors.NOT_ACTIVE, f"{player.display_name} is not in the ring.")

                now = timestamp()
                incoming = await tx.get_active_edge_for_target(self.group_id, removed_id)
                outgoing = await tx.get_active_edge_for_assassin(self.group_id, removed_id)
                if not incoming and not outgoing and scope.group.status == STATUS_ENDED:
                    # The winner of a finished game stepping out
                    closed, new_edge, game_over, hunter_id, next_id = [], None, False, None, None
                elif not incoming or not outgoing:
                    raise RingIntegrityError(f"{player.display_name} is active but not linked into the ring.")
                else:
                    hunter_id = incoming.assassin_player_id
                    next_id = outgoing.target_player_id
                    game_over = next_id == hunter_id
                    if game_over and not end_game:
                        raise RingError(errors.RING_TOO_SMALL)

                    await tx.close_assignment(incoming, REASON_REMOVED, now, departed_player_id=removed_id)
                    await tx.close_assignment(outgoing, REASON_REMOVED, now, departed_player_id=removed_id)
                    closed = [incoming, outgoing]
                    new_edge = None
                    if game_over:
                        await tx.end_game(self.group_id, hunter_id, now)
                    else:
                        dare = removal_dare(self.removal_dare_policy, incoming, outgoing)
                        new_edge = await tx.insert_assignment(self.group_id, hunter_id, next_id, dare, now)
                        await tx.set_replaced_by(closed, new_edge.id)

                await tx.set_player_active(self.group_id, removed_id, False)
                if leave_group:
                    player.removed_at = now
                    await tx.update_player_profile(player)
                names = await self._names(tx)
        except RingError as e:
            return self._failure("remove_member", e)

        if game_over:
            message = f"{player.display_name} was removed. {names.get(hunter_id, hunter_id)} is the last one standing."
        elif new_edge:
            message = (f"{player.display_name} was removed from the ring. "
                       f"{names.get(hunter_id, hunter_id)} now hunts {names.get(next_id, next_id)}.")
        else:
            message = f"{player.display_name} has left the finished game."

        return RingResult(
            True,
            message,
            version=scope.version,
            edges=[new_edge] if new_edge else [],
            events=[to_event(a) for a in closed],
            game_over=game_over,
            winner_id=hunter_id if game_over else None
        )

    # Dares

    async def edit_dare(self, assassin_id: str, dare_text: str, expected_version: Optional[int] = None) -> RingResult:
        """Change the dare on the assassin's open assignment."""
        dare_text = (dare_text or "").strip()
        try:
            async with self._mutation("edit_dare", expected_version) as scope:
                edge = await scope.tx.get_active_edge_for_assassin(self.group_id, assassin_id)
                if not edge:
                    raise RingError(errors.NO_ACTIVE_ASSIGNMENT)
                await scope.tx.update_dare(edge.id, dare_text)
                edge.dare_text = dare_text
        except RingError as e:
            return self._failure("edit_dare", e)

        return RingResult(True, "Dare updated.", version=scope.version, edges=[edge])

    # Reads

    async def audit(self) -> AuditReport:
        return await audit_ring(self.storage, self.group_id)

    async def get_current_assignment(self, player_id: str) -> Optional[CurrentAssignment]:
        async with self.storage.read() as tx:
            edge = await tx.get_active_edge_for_assassin(self.group_id, player_id)
            if not edge:
                return None
            target = await tx.get_player(self.group_id, edge.target_player_id)
        return CurrentAssignment(
            target_player_id=edge.target_player_id,
            target_display_name=target.display_name if target else "—",
            dare_text=edge.dare_text
        )

    async def assignment_status(self, player_id: str) -> str:
        """Tell a player with no assignment apart from the winner and the knocked out."""
        async with self.storage.read() as tx:
            if await tx.get_active_edge_for_assassin(self.group_id, player_id):
                return STATUS_HUNTING
            group = await tx.get_group(self.group_id)
            if group and group.status == STATUS_ENDED and group.winner_player_id == player_id:
                return STATUS_WON
            player = await tx.get_player(self.group_id, player_id)
            if player and not player.is_active and group and group.started_at:
                last = await tx.get_last_closure_as_target(self.group_id, player_id)
                if last and last.departed_player_id == player_id and (last.closed_at or 0) >= group.started_at:
                    return STATUS_ELIMINATED if last.reason_closed == REASON_ELIMINATED else STATUS_REMOVED
        return STATUS_WAITING

    async def get_ring(self) -> List[Assignment]:
        """Active edges in ring order."""
        edges = await self.storage.get_active_edges(self.group_id)
        by_assassin = {edge.assassin_player_id: edge for edge in edges}
        proposed = {a: e.target_player_id for a, e in by_assassin.items()}
        order = cycle_order(proposed, edges[0].assassin_player_id if edges else None)
        ordered = [by_assassin[player_id] for player_id in order]
        seen = {edge.id for edge in ordered}
        return ordered + [edge for edge in edges if edge.id not in seen]

    async def get_ring_pairs(self) -> List[Tuple[str, str]]:
        """(assassin, target) pairs of the active ring, for opening conversations."""
        return [(edge.assassin_player_id, edge.target_player_id) for edge in await self.get_ring()]

    async def get_events(self, since: Optional[int] = None) -> List[RingEvent]:
        """Every edge closure at or after since, oldest first."""
        closed = await self.storage.get_closed_edges(self.group_id, since)
        return [to_event(edge) for edge in closed]

    async def get_version(self) -> int:
        group = await self.storage.get_group(self.group_id)
        return group.version if group else 0

    async def check_game_end(self) -> Optional[str]:
        """Return the winner's player id once the game has ended."""
        group = await self.storage.get_group(self.group_id)
        if group and group.status == STATUS_ENDED:
            return group.winner_player_id
        return None
