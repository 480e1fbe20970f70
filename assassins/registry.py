"""Group membership for the assassin ring."""

import logging
import uuid
from typing import List, Optional

from .errors import ALREADY_CLAIMED, NOT_ACTIVE, RingError, UNKNOWN_PLAYER
from .models import Player
from .storage import RingStorage
from .timeutils import timestamp

logger = logging.getLogger(__name__)


class PlayerRegistry:
    """Tracks who belongs to a group.

    Membership changes never touch ring activity: new members sit out
    until the next seed or reseed, and players still in the ring must be
    removed through the ring engine first.
    """

    def __init__(self, storage: RingStorage, group_id: str):
        self.storage = storage
        self.group_id = group_id

    async def add_player(self, display_name: str, owner_identity: Optional[str] = None) -> Player:
        """Add a player to the group. Without an owner the player is a placeholder."""
        display_name = display_name.strip()
        if not display_name:
            raise ValueError("Display name cannot be empty")

        player = Player(
            id=uuid.uuid4().hex,
            group_id=self.group_id,
            display_name=display_name,
            is_active=0,
            owner_identity=owner_identity,
            joined_at=timestamp()
        )
        async with self.storage.transaction() as tx:
            await tx.ensure_group(self.group_id)
            await tx.insert_player(player)

        logger.info(f"Added player {player.id} ({display_name}) to group {self.group_id}")
        return player

    async def join(self, owner_identity: str, display_name: str) -> Player:
        """Get the caller's player in this group, creating or restoring it as needed."""
        async with self.storage.transaction() as tx:
            existing = await tx.get_player_by_owner(self.group_id, owner_identity)
            if existing:
                if existing.removed_at is not None:
                    existing.removed_at = None
                    await tx.update_player_profile(existing)
                return existing

        return await self.add_player(display_name, owner_identity)

    async def claim(self, player_id: str, owner_identity: str) -> Player:
        """Attach a real user to a placeholder player."""
        async with self.storage.transaction() as tx:
            player = await self._require(tx, player_id)
            if player.owner_identity == owner_identity:
                return player
            if player.owner_identity is not None:
                raise RingError(ALREADY_CLAIMED, f"{player.display_name} has already been claimed.")
            if await tx.get_player_by_owner(self.group_id, owner_identity):
                raise RingError(ALREADY_CLAIMED, "You already have a player in this group.")
            player.owner_identity = owner_identity
            await tx.update_player_profile(player)
        return player

    async def rename(self, player_id: str, display_name: str) -> Player:
        display_name = display_name.strip()
        if not display_name:
            raise ValueError("Display name cannot be empty")
        async with self.storage.transaction() as tx:
            player = await self._require(tx, player_id)
            player.display_name = display_name
            await tx.update_player_profile(player)
        return player

    async def leave_group(self, player_id: str) -> Player:
        """Mark a player who is not in the ring as having left the group."""
        async with self.storage.transaction() as tx:
            player = await self._require(tx, player_id)
            if player.is_active:
                raise RingError(NOT_ACTIVE, f"{player.display_name} is still in the ring. Remove them from the ring first.")
            if player.removed_at is None:
                player.removed_at = timestamp()
                await tx.update_player_profile(player)
        return player

    async def restore(self, player_id: str) -> Player:
        """Bring a player back into the group. They join the ring at the next seed."""
        async with self.storage.transaction() as tx:
            player = await self._require(tx, player_id)
            if player.removed_at is not None:
                player.removed_at = None
                await tx.update_player_profile(player)
        return player

    async def get(self, player_id: str) -> Optional[Player]:
        return await self.storage.get_player(self.group_id, player_id)

    async def get_by_owner(self, owner_identity: str) -> Optional[Player]:
        return await self.storage.get_player_by_owner(self.group_id, owner_identity)

    async def find_by_name(self, display_name: str) -> List[Player]:
        async with self.storage.read() as tx:
            return await tx.find_players_by_name(self.group_id, display_name)

    async def members(self) -> List[Player]:
        """Players currently in the group, in join order."""
        return await self.storage.get_players(self.group_id, include_removed=False)

    async def all_players(self) -> List[Player]:
        return await self.storage.get_players(self.group_id)

    async def _require(self, tx, player_id: str) -> Player:
        player = await tx.get_player(self.group_id, player_id)
        if not player:
            raise RingError(UNKNOWN_PLAYER)
        return player
