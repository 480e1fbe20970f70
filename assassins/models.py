"""Data models for the assassin ring."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

REASON_ELIMINATED = "eliminated"
REASON_RESEED = "reseed"
REASON_REMOVED = "removed"

STATUS_SETUP = "setup"
STATUS_ACTIVE = "active"
STATUS_ENDED = "ended"


@dataclass
class Player:
    """A member of a group. Never deleted so history stays attributable."""
    id: str
    group_id: str
    display_name: str
    is_active: int
    owner_identity: Optional[str]
    joined_at: int
    removed_at: Optional[int] = None

    @property
    def is_placeholder(self) -> bool:
        return self.owner_identity is None


@dataclass
class Assignment:
    """A directed assassin -> target edge."""
    id: int
    group_id: str
    assassin_player_id: str
    target_player_id: str
    dare_text: str
    is_active: int
    created_at: int
    closed_at: Optional[int] = None
    reason_closed: Optional[str] = None
    replaced_by_assignment_id: Optional[int] = None
    # Player whose departure closed this edge: the victim or the removed member
    departed_player_id: Optional[str] = None


@dataclass
class Group:
    """Per-guild game state."""
    id: str
    status: str
    version: int
    started_at: Optional[int] = None
    ended_at: Optional[int] = None
    winner_player_id: Optional[str] = None


@dataclass
class Game:
    """One played ring, from its seed to its winner or to the ring that replaced it."""
    id: int
    group_id: str
    started_at: int
    ended_at: Optional[int] = None
    winner_player_id: Optional[str] = None


@dataclass
class DareTemplate:
    id: int
    group_id: str
    text: str
    is_active: int


@dataclass(frozen=True)
class RingEdge:
    """One proposed assassin -> target pairing with its dare."""
    assassin: str
    target: str
    dare: str = ""


@dataclass
class ValidationResult:
    """Outcome of validating a proposed ring."""
    ok: bool
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass
class RingEvent:
    """A timestamped fact about the ring: an edge that was closed and why."""
    kind: str  # 'eliminated', 'removed' or 'reseed'
    assignment_id: int
    assassin_player_id: str
    target_player_id: str
    dare_text: str
    occurred_at: int
    departed_player_id: Optional[str] = None


@dataclass
class RingResult:
    """Result of a ring mutation."""
    success: bool
    message: str
    error: Optional[str] = None
    version: Optional[int] = None
    edges: List[Assignment] = field(default_factory=list)
    events: List[RingEvent] = field(default_factory=list)
    game_over: bool = False
    winner_id: Optional[str] = None


@dataclass
class EliminationResult(RingResult):
    """Result of an elimination."""
    victim_id: Optional[str] = None
    new_assignment: Optional[Assignment] = None


@dataclass
class AuditReport:
    """Outcome of re-verifying the stored ring."""
    valid: bool
    reason: Optional[str] = None
    details: Dict = field(default_factory=dict)


@dataclass
class CurrentAssignment:
    """What a player sees on their assignment screen."""
    target_player_id: str
    target_display_name: str
    dare_text: str


@dataclass
class FeedItem:
    """One line of the group's activity timeline."""
    id: str
    kind: str  # 'join', 'elimination', 'removal', 'game_started', 'game_ended'
    occurred_at: int
    text: str
