"""Activity timeline and elimination leaderboard derived from ring history."""

from collections import Counter
from typing import List, Tuple

from .config import DEFAULT_DARE, FEED_LIMIT
from .models import Assignment, FeedItem, Player, REASON_ELIMINATED, REASON_REMOVED
from .storage import RingStorage


def is_kill(assignment: Assignment) -> bool:
    """Whether a closed edge is an elimination credited to its assassin."""
    return (assignment.reason_closed == REASON_ELIMINATED
            and assignment.departed_player_id == assignment.target_player_id)


def is_removal(assignment: Assignment) -> bool:
    """Whether a closed edge records its target being removed from the ring."""
    return (assignment.reason_closed == REASON_REMOVED
            and assignment.departed_player_id == assignment.target_player_id)


async def build_feed(storage: RingStorage, group_id: str, limit: int = FEED_LIMIT) -> List[FeedItem]:
    """Newest-first timeline of joins, eliminations, removals and game start/end."""
    async with storage.read() as tx:
        players = await tx.get_players(group_id)
        closed = await tx.get_closed_edges(group_id, reasons=[REASON_ELIMINATED, REASON_REMOVED])
        games = await tx.get_games(group_id)

    names = {p.id: p.display_name for p in players}
    items = [
        FeedItem(id=f"join-{p.id}", kind="join", occurred_at=p.joined_at, text=f"{p.display_name} joined the game")
        for p in players
    ]

    for edge in closed:
        assassin = names.get(edge.assassin_player_id, "Someone")
        target = names.get(edge.target_player_id, "someone")
        if is_kill(edge):
            items.append(FeedItem(
                id=f"elimination-{edge.id}",
                kind="elimination",
                occurred_at=edge.closed_at,
                text=f"{assassin} eliminated {target} with “{edge.dare_text or DEFAULT_DARE}”"
            ))
        elif is_removal(edge):
            items.append(FeedItem(
                id=f"removal-{edge.id}",
                kind="removal",
                occurred_at=edge.closed_at,
                text=f"{target} was removed from the game"
            ))

    for game in games:
        items.append(FeedItem(id=f"game-{game.id}-started", kind="game_started",
                              occurred_at=game.started_at, text="Game started"))
        if game.ended_at is not None:
            winner = names.get(game.winner_player_id)
            text = f"Game ended. {winner} wins!" if winner else "Game ended"
            items.append(FeedItem(id=f"game-{game.id}-ended", kind="game_ended",
                                  occurred_at=game.ended_at, text=text))

    items.sort(key=lambda item: item.occurred_at, reverse=True)
    return items[:limit]


async def leaderboard(storage: RingStorage, group_id: str) -> List[Tuple[Player, int]]:
    """Players with their elimination counts, most eliminations first."""
    async with storage.read() as tx:
        players = await tx.get_players(group_id)
        closed = await tx.get_closed_edges(group_id, reasons=[REASON_ELIMINATED])

    kills = Counter(edge.assassin_player_id for edge in closed if is_kill(edge))
    ranked = [(player, kills.get(player.id, 0)) for player in players]
    ranked.sort(key=lambda entry: (-entry[1], -entry[0].is_active, entry[0].display_name.lower()))
    return ranked
