"""Ring engine error codes and exceptions."""

# Validation rejections, always returned before any write
MISSING_TARGET = "missing_target"
SELF_TARGET = "self_target"
DUPLICATE_TARGET = "duplicate_target"
TARGET_OUTSIDE_SET = "target_outside_set"
FRAGMENTED_RING = "fragmented_ring"

# Store-level anomalies
DUPLICATE_ASSASSIN = "duplicate_assassin"
ASSASSIN_OUTSIDE_SET = "assassin_outside_set"

NO_ACTIVE_ASSIGNMENT = "no_active_assignment"
NOT_ACTIVE = "not_active"
UNKNOWN_PLAYER = "unknown_player"
ALREADY_CLAIMED = "already_claimed"
INSUFFICIENT_PLAYERS = "insufficient_players"
RING_TOO_SMALL = "ring_too_small"

CONFLICT = "conflict"
BUSY = "busy"
INTEGRITY = "integrity"

MESSAGES = {
    MISSING_TARGET: "Each assassin must have a target.",
    SELF_TARGET: "No one can target themselves.",
    DUPLICATE_TARGET: "Targets must be unique and every player must be targeted exactly once.",
    TARGET_OUTSIDE_SET: "Targets must be chosen among the ring's players only.",
    FRAGMENTED_RING: "Ring must be a single cycle including all participants.",
    DUPLICATE_ASSASSIN: "A player appears as assassin more than once.",
    ASSASSIN_OUTSIDE_SET: "An active assignment belongs to a player who is not in the ring.",
    NO_ACTIVE_ASSIGNMENT: "There is no active assignment for this player.",
    NOT_ACTIVE: "This player is not in the ring.",
    UNKNOWN_PLAYER: "This player does not exist in this group.",
    ALREADY_CLAIMED: "This player has already been claimed.",
    INSUFFICIENT_PLAYERS: "At least 2 players are needed to form a ring.",
    RING_TOO_SMALL: "Removing this player would leave fewer than 2 players in the ring. End the game instead.",
    CONFLICT: "The ring changed while this action was being applied. Please try again.",
    BUSY: "The ring is busy with another change. Please try again in a moment.",
    INTEGRITY: "The ring failed its integrity check. The change was not applied.",
}


class RingError(Exception):
    """Base class for all recoverable ring engine errors."""

    def __init__(self, code: str, message: str = None):
        self.code = code
        self.message = message or MESSAGES.get(code, code)
        super().__init__(self.message)


class RingValidationError(RingError):
    """A proposed ring was rejected by the validator."""


class RingBusy(RingError):
    """The group's ring lock could not be acquired in time."""

    def __init__(self, message: str = None):
        super().__init__(BUSY, message)


class RingConflict(RingError):
    """The stored ring changed underneath the caller or the write lock timed out."""

    def __init__(self, message: str = None):
        super().__init__(CONFLICT, message)


class RingIntegrityError(RingError):
    """A mutation produced a ring that failed the integrity audit."""

    def __init__(self, message: str = None):
        super().__init__(INTEGRITY, message)
