"""Posting ring news to the group's feed channel."""

import logging
from typing import List

import discord

from .config import FEED_CHANNEL_STATE_KEY
from .models import RingEvent
from .storage import RingStorage
from .view import RingView

logger = logging.getLogger(__name__)


class NotificationManager:
    """Relays engine events to Discord. The engine itself never pushes."""

    def __init__(self, bot, storage: RingStorage):
        self.bot = bot
        self.storage = storage

    async def _feed_channel(self, interaction: discord.Interaction):
        guild_id = str(interaction.guild_id) if interaction.guild_id else "DM"
        configured_channel_id = await self.storage.get_state(FEED_CHANNEL_STATE_KEY, guild_id)

        if configured_channel_id:
            channel = self.bot.get_channel(int(configured_channel_id))
            if channel:
                return channel
            # Channel was deleted or bot can't access it
            logger.warning(f"Configured feed channel {configured_channel_id} not accessible, clearing setting")
            await self.storage.set_state(FEED_CHANNEL_STATE_KEY, "", guild_id)

        return interaction.channel

    async def send_public_message(self, interaction: discord.Interaction, content=None, embed=None):
        """Send public message to configured channel or fallback."""
        try:
            channel = await self._feed_channel(interaction)
            if content:
                await channel.send(content)
            elif embed:
                await channel.send(embed=embed)
        except discord.DiscordException as e:
            logger.warning(f"Failed to send public message: {e}")
            # Final fallback to interaction followup
            try:
                if content:
                    await interaction.followup.send(content)
                elif embed:
                    await interaction.followup.send(embed=embed)
            except discord.DiscordException as followup_error:
                logger.warning(f"Failed to send public message followup: {followup_error}")

    async def publish_events(self, interaction: discord.Interaction, view: RingView, events: List[RingEvent]):
        """Post newsworthy ring events (eliminations, removals) to the feed channel."""
        if not events:
            return
        names = await self.storage.get_player_names(view.guild_id)
        lines = [line for line in (view.format_event(event, names) for event in events) if line]
        if lines:
            await self.send_public_message(interaction, content="\n".join(lines))

    async def send_victory_announcement(self, interaction: discord.Interaction, winner_name: str):
        """Send public victory announcement."""
        embed = discord.Embed(
            title="🎉 The Ring Is Closed!",
            description=f"**{winner_name}** is the last assassin standing and wins the game!",
            color=0xffd700
        )
        embed.add_field(
            name="🎮 New Game",
            value="Admins can use `/admin_seed` to start a new ring!",
            inline=False
        )
        embed.set_footer(text="Congratulations to our champion!")

        await self.send_public_message(interaction, embed=embed)
