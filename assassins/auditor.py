"""Integrity auditing of the stored ring."""

import logging
from collections import Counter

from .errors import ASSASSIN_OUTSIDE_SET, DUPLICATE_ASSASSIN, MISSING_TARGET
from .models import AuditReport, STATUS_ENDED, STATUS_SETUP
from .storage import RingStorage, RingTransaction
from .validator import cycle_order, validate

logger = logging.getLogger(__name__)


async def audit_transaction(tx: RingTransaction, group_id: str) -> AuditReport:
    """Re-derive whether the stored active edges form a perfect ring. Performs no writes."""
    group = await tx.get_group(group_id)
    status = group.status if group else STATUS_SETUP
    version = group.version if group else 0

    active_players = [p.id for p in await tx.get_active_players(group_id)]
    edges = await tx.get_active_edges(group_id)

    details = {
        "group_id": group_id,
        "status": status,
        "version": version,
        "active_players": len(active_players),
        "active_edges": len(edges),
        "order": [],
    }

    if not edges:
        if not active_players:
            details["state"] = "empty"
            return AuditReport(True, details=details)
        if len(active_players) == 1 and status == STATUS_ENDED:
            details["state"] = "ended"
            details["winner_player_id"] = group.winner_player_id
            return AuditReport(True, details=details)
        details["state"] = "broken"
        return AuditReport(False, MISSING_TARGET, details)

    counts = Counter(edge.assassin_player_id for edge in edges)
    duplicates = sorted(player_id for player_id, count in counts.items() if count > 1)
    if duplicates:
        details["state"] = "broken"
        details["players"] = duplicates
        return AuditReport(False, DUPLICATE_ASSASSIN, details)

    active_set = set(active_players)
    outsiders = sorted(player_id for player_id in counts if player_id not in active_set)
    if outsiders:
        details["state"] = "broken"
        details["players"] = outsiders
        return AuditReport(False, ASSASSIN_OUTSIDE_SET, details)

    proposed = {edge.assassin_player_id: edge.target_player_id for edge in edges}
    result = validate(active_players, proposed)
    if not result.ok:
        details["state"] = "broken"
        return AuditReport(False, result.reason, details)

    details["state"] = "ring"
    details["order"] = cycle_order(proposed, active_players[0])
    return AuditReport(True, details=details)


async def audit_ring(storage: RingStorage, group_id: str) -> AuditReport:
    """Reload a group's ring from storage and verify it."""
    async with storage.read() as tx:
        report = await audit_transaction(tx, group_id)
    if not report.valid:
        logger.error(f"Ring audit failed for group {group_id}: {report.reason} {report.details}")
    return report
