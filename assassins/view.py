"""View formatting for assassin ring displays."""

from typing import Dict, List, Optional, Tuple

import discord

from .config import DEFAULT_DARE
from .engine import RingEngine, STATUS_ELIMINATED, STATUS_REMOVED, STATUS_WON
from .feed import build_feed, leaderboard
from .models import AuditReport, CurrentAssignment, Player, RingEvent, REASON_ELIMINATED, REASON_REMOVED
from .storage import RingStorage
from .timeutils import format_timestamp

RING_COLOR = 0x8B0000


def parse_ring_text(text: str) -> List[Tuple[str, str, str]]:
    """Parse 'Alice > Bob : dare; Bob > Alice' into (assassin, target, dare) name triples.

    Entries are separated by ';' or newlines, the dare after ':' is optional.
    """
    entries = []
    for chunk in text.replace("\n", ";").split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        pairing, _, dare = chunk.partition(":")
        assassin, sep, target = pairing.partition(">")
        if not sep or not assassin.strip() or not target.strip():
            raise ValueError(f"Could not read '{chunk}'. Use 'Assassin > Target : dare'.")
        entries.append((assassin.strip(), target.strip(), dare.strip()))
    return entries


class RingView:
    """Handles formatting of ring displays."""

    def __init__(self, storage: RingStorage, engine: RingEngine, guild_id: str):
        self.storage = storage
        self.engine = engine
        self.guild_id = guild_id

    async def _names(self) -> Dict[str, str]:
        return await self.storage.get_player_names(self.guild_id)

    async def format_assignment(self, player: Player) -> discord.Embed:
        """Format a player's current assignment, or why they have none."""
        current: Optional[CurrentAssignment] = await self.engine.get_current_assignment(player.id)
        if current:
            embed = discord.Embed(title="🎯 Your Assignment", color=RING_COLOR)
            embed.add_field(name="Target", value=current.target_display_name, inline=False)
            embed.add_field(name="Your Dare", value=current.dare_text or DEFAULT_DARE, inline=False)
            embed.set_footer(text="Complete the dare, then use /eliminate")
            return embed

        status = await self.engine.assignment_status(player.id)
        if status == STATUS_WON:
            return discord.Embed(title="🏆 You Won!", description="You are the last assassin standing. The game is over.",
                                 color=0xffd700)
        if status == STATUS_ELIMINATED:
            return discord.Embed(title="💀 Eliminated", description="You have been eliminated from this game.",
                                 color=0x555555)
        if status == STATUS_REMOVED:
            return discord.Embed(title="🚪 Removed", description="You were removed from the current ring.",
                                 color=0x555555)
        return discord.Embed(title="⏳ No Assignment Yet",
                             description="You will get a target when the admins start the next ring.",
                             color=0x4169E1)

    async def format_ring(self) -> discord.Embed:
        """Format the full ring for admins, in hunting order."""
        edges = await self.engine.get_ring()
        names = await self._names()
        version = await self.engine.get_version()
        embed = discord.Embed(title="🔪 Current Ring", color=RING_COLOR)
        if not edges:
            embed.description = "No active ring. Use `/admin_seed` to start one."
            return embed

        lines = []
        for edge in edges:
            dare = edge.dare_text or "*no dare yet*"
            lines.append(f"**{names.get(edge.assassin_player_id, '—')}** → "
                         f"**{names.get(edge.target_player_id, '—')}**: {dare}")
        embed.description = "\n".join(lines)
        embed.set_footer(text=f"{len(edges)} players • ring version {version}")
        return embed

    async def format_audit(self, report: AuditReport) -> discord.Embed:
        """Format an integrity audit report."""
        details = report.details
        if report.valid:
            embed = discord.Embed(title="✅ Ring Is Valid", color=0x00ff00)
        else:
            embed = discord.Embed(title="❌ Ring Is NOT Valid", color=0xff0000,
                                  description=f"Problem: `{report.reason}`. Please review assignments.")
        embed.add_field(name="State", value=details.get("state", "—"), inline=True)
        embed.add_field(name="Active Players", value=str(details.get("active_players", 0)), inline=True)
        embed.add_field(name="Active Edges", value=str(details.get("active_edges", 0)), inline=True)
        if details.get("order"):
            names = await self._names()
            order = [names.get(player_id, player_id) for player_id in details["order"]]
            embed.add_field(name="Order", value=" → ".join(order + order[:1])[:1024], inline=False)
        embed.set_footer(text=f"Game {details.get('status', '—')} • version {details.get('version', 0)}")
        return embed

    async def format_players(self) -> discord.Embed:
        """Format the group roster with ring status."""
        players = await self.storage.get_players(self.guild_id)
        embed = discord.Embed(title="👥 Players", color=0x4169E1)
        if not players:
            embed.description = "No players yet. Use `/join` or `/admin_add_player`."
            return embed

        lines = []
        for player in players:
            if player.removed_at is not None:
                badge = "🚪 Left"
            elif player.is_active:
                badge = "🟢 In ring"
            else:
                badge = "⚪ Waiting"
            owner = f" (<@{player.owner_identity}>)" if player.owner_identity else " (placeholder)"
            lines.append(f"**{player.display_name}**{owner} - {badge}")
        embed.description = "\n".join(lines)[:4096]
        active = sum(1 for p in players if p.is_active)
        embed.set_footer(text=f"{active} of {len(players)} in the ring")
        return embed

    async def format_feed(self) -> discord.Embed:
        """Format the group's activity timeline."""
        items = await build_feed(self.storage, self.guild_id, limit=15)
        embed = discord.Embed(title="📰 Activity", color=0x800080)
        if not items:
            embed.description = "Nothing has happened yet."
            return embed
        embed.description = "\n".join(f"`{format_timestamp(item.occurred_at)}` {item.text}" for item in items)[:4096]
        return embed

    async def format_leaderboard(self) -> discord.Embed:
        """Format elimination counts."""
        ranked = await leaderboard(self.storage, self.guild_id)
        embed = discord.Embed(title="🗡️ Leaderboard", color=0x800080)
        if not ranked:
            embed.description = "No players yet. Use `/join` to enter the game!"
            return embed

        lines = []
        for player, kills in ranked:
            marker = "" if player.is_active else " 💀"
            lines.append(f"**{player.display_name}**{marker} - {kills} elimination{'s' if kills != 1 else ''}")
        embed.description = "\n".join(lines)[:4096]
        return embed

    def format_event(self, event: RingEvent, names: Dict[str, str]) -> Optional[str]:
        """Format a ring event for the public feed channel, if it is news."""
        if event.departed_player_id != event.target_player_id:
            return None
        assassin = names.get(event.assassin_player_id, "Someone")
        target = names.get(event.target_player_id, "someone")
        if event.kind == REASON_ELIMINATED:
            return f"🗡️ **{assassin}** eliminated **{target}** with “{event.dare_text or DEFAULT_DARE}”"
        if event.kind == REASON_REMOVED:
            return f"🚪 **{target}** was removed from the game"
        return None

    def format_error(self, message: str) -> discord.Embed:
        """Format an error message."""
        embed = discord.Embed(
            title="❌ Error",
            description=message,
            color=0xff0000
        )
        return embed

    def format_success(self, message: str) -> discord.Embed:
        """Format a success message."""
        embed = discord.Embed(
            title="✅ Success",
            description=message,
            color=0x00ff00
        )
        return embed
