"""Pure ring validation.

A ring is legal when every active player has exactly one target, nobody
targets themselves, every player is targeted exactly once by another
active player, and following targets from any player visits all of them
before returning to the start.
"""

from typing import Dict, Iterable, List, Optional

from .errors import (
    MESSAGES, MISSING_TARGET, SELF_TARGET, DUPLICATE_TARGET,
    TARGET_OUTSIDE_SET, FRAGMENTED_RING,
)
from .models import RingEdge, ValidationResult


def _reject(reason: str) -> ValidationResult:
    return ValidationResult(False, reason, MESSAGES[reason])


def walk_cycle(start: str, proposed: Dict[str, str], limit: int) -> List[str]:
    """Follow targets from start until a player repeats or limit steps are taken.

    Returns the players visited in order, starting with start.
    """
    visited = []
    seen = set()
    current = start
    for _ in range(limit):
        if current in seen or current is None:
            break
        seen.add(current)
        visited.append(current)
        current = proposed.get(current)
    return visited


def validate(active_players: Iterable[str], proposed: Dict[str, str]) -> ValidationResult:
    """Check that proposed (assassin -> target) is a single cycle over active_players."""
    players = list(dict.fromkeys(active_players))
    player_set = set(players)

    for player_id in players:
        if not proposed.get(player_id):
            return _reject(MISSING_TARGET)

    for assassin_id, target_id in proposed.items():
        if assassin_id == target_id:
            return _reject(SELF_TARGET)

    targets = list(proposed.values())
    if len(set(targets)) != len(targets) or len(targets) != len(players):
        return _reject(DUPLICATE_TARGET)

    for target_id in targets:
        if target_id not in player_set:
            return _reject(TARGET_OUTSIDE_SET)

    if not players:
        return ValidationResult(True)

    start = players[0]
    visited = walk_cycle(start, proposed, len(players))
    if len(visited) != len(players) or proposed[visited[-1]] != start:
        return _reject(FRAGMENTED_RING)

    return ValidationResult(True)


def validate_edges(edges: List[RingEdge], active_players: Optional[Iterable[str]] = None) -> ValidationResult:
    """Validate a list of RingEdges; the active set defaults to the listed assassins."""
    proposed = {edge.assassin: edge.target for edge in edges}
    if active_players is None:
        active_players = [edge.assassin for edge in edges]
    return validate(active_players, proposed)


def cycle_order(proposed: Dict[str, str], start: Optional[str] = None) -> List[str]:
    """Return players in ring order starting at start (or the smallest id)."""
    if not proposed:
        return []
    if start is None:
        start = min(proposed)
    return walk_cycle(start, proposed, len(proposed))
