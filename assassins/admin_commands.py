"""Admin commands for running the ring."""

import os
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from .commands import guild_key
from .config import FEED_CHANNEL_STATE_KEY
from .dares import DareTemplates
from .engine import RingEngine
from .errors import RingError
from .models import Player, RingEdge, STATUS_ACTIVE
from .notifications import NotificationManager
from .registry import PlayerRegistry
from .storage import RingStorage
from .view import RingView, parse_ring_text


class AdminCommands(commands.Cog):
    """Admin-only commands for building and repairing the ring."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.storage = RingStorage()
        self.notifications = NotificationManager(bot, self.storage)

        # Get owner ID from environment or set a default for testing
        self.owner_id = int(os.getenv('BOT_OWNER_ID', '0'))

    async def cog_load(self):
        await self.storage.initialize()

    def _get_guild_engine(self, guild_id: str) -> RingEngine:
        return RingEngine(self.storage, guild_id)

    def _get_guild_view(self, guild_id: str) -> RingView:
        return RingView(self.storage, self._get_guild_engine(guild_id), guild_id)

    def is_admin(self, interaction: discord.Interaction) -> bool:
        """Check if user is the bot owner or a server administrator."""
        if interaction.user.id == self.owner_id:
            return True

        application = self.bot.application
        if application is not None and application.owner is not None and interaction.user.id == application.owner.id:
            return True

        permissions = getattr(interaction.user, "guild_permissions", None)
        return bool(permissions and permissions.administrator)

    async def _deny(self, interaction: discord.Interaction) -> bool:
        if self.is_admin(interaction):
            return False
        await interaction.response.send_message("❌ This command is restricted to game admins.", ephemeral=True)
        return True

    async def _resolve(self, registry: PlayerRegistry, name: str) -> Player:
        matches = await registry.find_by_name(name)
        if not matches:
            raise ValueError(f"No player named '{name}'.")
        if len(matches) > 1:
            raise ValueError(f"Several players are named '{name}'. Rename one of them first.")
        return matches[0]

    async def _respond(self, interaction: discord.Interaction, view: RingView, result, success_embed=None):
        """Show a mutation result to the admin and relay its events to the feed."""
        if not result.success:
            await interaction.followup.send(embed=view.format_error(result.message), ephemeral=True)
            return
        await interaction.followup.send(embed=success_embed or view.format_success(result.message), ephemeral=True)
        await self.notifications.publish_events(interaction, view, result.events)

    @app_commands.command(name="admin_add_player", description="[ADMIN] Add a placeholder player to the group")
    @app_commands.describe(name="Display name for the new player")
    async def add_player(self, interaction: discord.Interaction, name: str):
        if await self._deny(interaction):
            return
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)

        try:
            player = await PlayerRegistry(self.storage, guild_id).add_player(name)
        except ValueError as e:
            await interaction.response.send_message(embed=view.format_error(str(e)), ephemeral=True)
            return

        message = f"Added **{player.display_name}**. They can use `/claim {player.display_name}` to take this player."
        group = await self.storage.get_group(guild_id)
        if group and group.status == STATUS_ACTIVE:
            message += "\nThe game is active, so they will not be in the ring until the next seed."
        await interaction.response.send_message(embed=view.format_success(message), ephemeral=True)

    @app_commands.command(name="admin_restore_player", description="[ADMIN] Bring a player who left back into the group")
    @app_commands.describe(name="The player's display name")
    async def restore_player(self, interaction: discord.Interaction, name: str):
        if await self._deny(interaction):
            return
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        registry = PlayerRegistry(self.storage, guild_id)

        try:
            player = await registry.restore((await self._resolve(registry, name)).id)
        except (ValueError, RingError) as e:
            await interaction.response.send_message(embed=view.format_error(str(e)), ephemeral=True)
            return
        await interaction.response.send_message(
            embed=view.format_success(f"**{player.display_name}** is back in the group and will join the ring at the next seed."),
            ephemeral=True
        )

    @app_commands.command(name="admin_seed", description="[ADMIN] Start a new ring with every group member")
    async def seed(self, interaction: discord.Interaction):
        if await self._deny(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)

        result = await self._get_guild_engine(guild_id).seed()
        await self._respond(interaction, view, result, success_embed=await view.format_ring() if result.success else None)

    @app_commands.command(name="admin_reseed", description="[ADMIN] Replace the ring with your own pairings")
    @app_commands.describe(mapping="Pairings like 'Alice > Bob : dare; Bob > Alice : dare'")
    async def reseed(self, interaction: discord.Interaction, mapping: str):
        if await self._deny(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        registry = PlayerRegistry(self.storage, guild_id)

        try:
            edges = []
            for assassin_name, target_name, dare in parse_ring_text(mapping):
                assassin = await self._resolve(registry, assassin_name)
                target = await self._resolve(registry, target_name)
                edges.append(RingEdge(assassin.id, target.id, dare))
        except ValueError as e:
            await interaction.followup.send(embed=view.format_error(str(e)), ephemeral=True)
            return

        result = await self._get_guild_engine(guild_id).reseed(edges)
        await self._respond(interaction, view, result, success_embed=await view.format_ring() if result.success else None)

    @app_commands.command(name="admin_remove", description="[ADMIN] Remove a player from the ring without an elimination")
    @app_commands.describe(name="The player's display name", end_game="End the game if only one player would remain")
    async def remove(self, interaction: discord.Interaction, name: str, end_game: Optional[bool] = False):
        if await self._deny(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        registry = PlayerRegistry(self.storage, guild_id)

        try:
            player = await self._resolve(registry, name)
        except ValueError as e:
            await interaction.followup.send(embed=view.format_error(str(e)), ephemeral=True)
            return

        result = await self._get_guild_engine(guild_id).remove_member(player.id, end_game=bool(end_game))
        await self._respond(interaction, view, result)
        if result.success and result.game_over:
            names = await self.storage.get_player_names(guild_id)
            await self.notifications.send_victory_announcement(interaction, names.get(result.winner_id, "Someone"))

    @app_commands.command(name="admin_dare", description="[ADMIN] Change a player's dare")
    @app_commands.describe(name="The assassin's display name", dare="The new dare")
    async def dare(self, interaction: discord.Interaction, name: str, dare: str):
        if await self._deny(interaction):
            return
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        registry = PlayerRegistry(self.storage, guild_id)

        try:
            player = await self._resolve(registry, name)
        except ValueError as e:
            await interaction.response.send_message(embed=view.format_error(str(e)), ephemeral=True)
            return

        result = await self._get_guild_engine(guild_id).edit_dare(player.id, dare)
        if result.success:
            embed = view.format_success(f"Dare for **{player.display_name}** updated.")
        else:
            embed = view.format_error(result.message)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="admin_audit", description="[ADMIN] Check that the ring is a single unbroken cycle")
    async def audit(self, interaction: discord.Interaction):
        if await self._deny(interaction):
            return
        view = self._get_guild_view(guild_key(interaction))
        report = await view.engine.audit()
        await interaction.response.send_message(embed=await view.format_audit(report), ephemeral=True)

    @app_commands.command(name="admin_ring", description="[ADMIN] Show who hunts whom, and their dares")
    async def ring(self, interaction: discord.Interaction):
        if await self._deny(interaction):
            return
        view = self._get_guild_view(guild_key(interaction))
        await interaction.response.send_message(embed=await view.format_ring(), ephemeral=True)

    @app_commands.command(name="admin_template_add", description="[ADMIN] Add a dare template used when seeding")
    @app_commands.describe(text="Dare text. 'your target' is replaced with the target's name")
    async def template_add(self, interaction: discord.Interaction, text: str):
        if await self._deny(interaction):
            return
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        try:
            template = await DareTemplates(self.storage, guild_id).add(text)
        except ValueError as e:
            await interaction.response.send_message(embed=view.format_error(str(e)), ephemeral=True)
            return
        await interaction.response.send_message(embed=view.format_success(f"Template #{template.id} added."), ephemeral=True)

    @app_commands.command(name="admin_templates", description="[ADMIN] List dare templates")
    async def templates(self, interaction: discord.Interaction):
        if await self._deny(interaction):
            return
        templates = await DareTemplates(self.storage, guild_key(interaction)).list()
        embed = discord.Embed(title="📝 Dare Templates", color=0x800080)
        if templates:
            embed.description = "\n".join(f"`#{t.id}` {t.text}" for t in templates)[:4096]
        else:
            embed.description = "No templates yet. Seeding will use the default dare."
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="admin_template_remove", description="[ADMIN] Stop using a dare template")
    @app_commands.describe(template_id="The template number shown by /admin_templates")
    async def template_remove(self, interaction: discord.Interaction, template_id: int):
        if await self._deny(interaction):
            return
        guild_id = guild_key(interaction)
        view = self._get_guild_view(guild_id)
        if await DareTemplates(self.storage, guild_id).deactivate(template_id):
            embed = view.format_success(f"Template #{template_id} removed.")
        else:
            embed = view.format_error(f"No active template #{template_id}.")
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="admin_set_feed_channel", description="[ADMIN] Set the channel for game announcements")
    @app_commands.describe(channel="The channel where eliminations should be announced")
    async def set_feed_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        if await self._deny(interaction):
            return
        guild_id = guild_key(interaction)

        if not channel.permissions_for(interaction.guild.me).send_messages:
            await interaction.response.send_message(f"❌ I don't have permission to send messages in {channel.mention}.", ephemeral=True)
            return

        await self.storage.set_state(FEED_CHANNEL_STATE_KEY, str(channel.id), guild_id)

        embed = discord.Embed(
            title="✅ Channel Set Successfully",
            description=f"Game announcements will now be sent to {channel.mention}",
            color=0x00ff00
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot: commands.Bot):
    """Setup function to add the admin cog to the bot."""
    await bot.add_cog(AdminCommands(bot))
