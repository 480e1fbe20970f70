"""Discord slash commands for players."""

import discord
from discord.ext import commands
from discord import app_commands

from .engine import RingEngine
from .errors import RingError
from .notifications import NotificationManager
from .registry import PlayerRegistry
from .storage import RingStorage
from .view import RingView


def guild_key(interaction: discord.Interaction) -> str:
    return str(interaction.guild_id) if interaction.guild_id else "DM"


class RingCommands(commands.Cog):
    """Cog containing the player-facing slash commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.storage = RingStorage()
        self.notifications = NotificationManager(bot, self.storage)

    async def cog_load(self):
        """Initialize the database when the cog loads."""
        await self.storage.initialize()

    def _get_guild_engine(self, guild_id: str) -> RingEngine:
        """Get a RingEngine instance for the specified guild."""
        return RingEngine(self.storage, guild_id)

    def _get_guild_registry(self, guild_id: str) -> PlayerRegistry:
        return PlayerRegistry(self.storage, guild_id)

    def _get_guild_view(self, guild_id: str) -> RingView:
        """Get a RingView instance for the specified guild."""
        return RingView(self.storage, self._get_guild_engine(guild_id), guild_id)

    async def _require_player(self, interaction: discord.Interaction, view: RingView):
        registry = self._get_guild_registry(guild_key(interaction))
        player = await registry.get_by_owner(str(interaction.user.id))
        if not player:
            await interaction.response.send_message(
                embed=view.format_error("You are not in this group. Use `/join` or `/claim` first."), ephemeral=True
            )
        return player

    @app_commands.command(name="join", description="Join the assassin game")
    async def join(self, interaction: discord.Interaction):
        """Join the group. New players enter the ring at the next seed."""
        registry = self._get_guild_registry(guild_key(interaction))
        player = await registry.join(str(interaction.user.id), interaction.user.display_name)
        message = "You have joined the game!"
        if player.is_active:
            message = "You are already in the ring. Use `/assignment` to see your target."
        else:
            message += " You will get a target when the next ring starts."
        await interaction.response.send_message(message, ephemeral=True)

    @app_commands.command(name="claim", description="Claim a player your admin added for you")
    @app_commands.describe(name="The display name the admin gave your player")
    async def claim(self, interaction: discord.Interaction, name: str):
        """Attach yourself to a placeholder player."""
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        registry = self._get_guild_registry(guild_id)

        matches = [p for p in await registry.find_by_name(name) if p.is_placeholder]
        if len(matches) != 1:
            reason = "No unclaimed player has that name." if not matches else "Several unclaimed players share that name. Ask an admin."
            await interaction.response.send_message(embed=view.format_error(reason), ephemeral=True)
            return

        try:
            player = await registry.claim(matches[0].id, str(interaction.user.id))
        except RingError as e:
            await interaction.response.send_message(embed=view.format_error(e.message), ephemeral=True)
            return

        await interaction.response.send_message(embed=view.format_success(f"You are now playing as **{player.display_name}**."),
                                                ephemeral=True)

    @app_commands.command(name="leave", description="Leave the assassin game")
    async def leave(self, interaction: discord.Interaction):
        """Leave the group, stepping out of the ring without being eliminated."""
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        player = await self._require_player(interaction, view)
        if not player:
            return

        if player.is_active:
            engine = self._get_guild_engine(guild_id)
            result = await engine.remove_member(player.id, leave_group=True)
            if not result.success:
                await interaction.response.send_message(embed=view.format_error(result.message), ephemeral=True)
                return
            await interaction.response.send_message("You have left the game.", ephemeral=True)
            await self.notifications.publish_events(interaction, view, result.events)
            return

        try:
            await self._get_guild_registry(guild_id).leave_group(player.id)
        except RingError as e:
            await interaction.response.send_message(embed=view.format_error(e.message), ephemeral=True)
            return
        await interaction.response.send_message("You have left the game.", ephemeral=True)

    @app_commands.command(name="assignment", description="See your target and dare")
    async def assignment(self, interaction: discord.Interaction):
        """Show the caller's current assignment."""
        view = self._get_guild_view(guild_key(interaction))
        player = await self._require_player(interaction, view)
        if not player:
            return

        embed = await view.format_assignment(player)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="eliminate", description="Report that you completed your dare on your target")
    async def eliminate(self, interaction: discord.Interaction):
        """Eliminate the caller's target."""
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        player = await self._require_player(interaction, view)
        if not player:
            return

        await interaction.response.defer(ephemeral=True)
        result = await self._get_guild_engine(guild_id).eliminate(player.id)

        if not result.success:
            await interaction.followup.send(embed=view.format_error(result.message), ephemeral=True)
            return

        await interaction.followup.send(result.message, ephemeral=True)
        await self.notifications.publish_events(interaction, view, result.events)
        if result.game_over:
            await self.notifications.send_victory_announcement(interaction, player.display_name)

    @app_commands.command(name="feed", description="See what has happened in the game")
    async def feed(self, interaction: discord.Interaction):
        view = self._get_guild_view(guild_key(interaction))
        await interaction.response.send_message(embed=await view.format_feed(), ephemeral=True)

    @app_commands.command(name="leaderboard", description="See who has eliminated the most players")
    async def leaderboard(self, interaction: discord.Interaction):
        view = self._get_guild_view(guild_key(interaction))
        await interaction.response.send_message(embed=await view.format_leaderboard())

    @app_commands.command(name="players", description="List the players in this game")
    async def players(self, interaction: discord.Interaction):
        view = self._get_guild_view(guild_key(interaction))
        await interaction.response.send_message(embed=await view.format_players(), ephemeral=True)


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(RingCommands(bot))
