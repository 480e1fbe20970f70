"""Error handling and owner notifications for the Assassin Ring bot."""

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import discord
from discord import app_commands
from discord.ext import commands

from assassins.errors import RingError


logger = logging.getLogger(__name__)


class ErrorHandler:
    """Centralized error handling and notification system."""

    def __init__(self, bot: commands.Bot, owner_id: int, notification_cooldown: int = 300):
        self.bot = bot
        self.owner_id = owner_id
        self.error_counts: Dict[str, int] = {}
        self.last_notification: Dict[str, datetime] = {}
        self.notification_cooldown = notification_cooldown  # seconds between same error types

    async def notify_owner(self, title: str, description: str, error: Optional[BaseException] = None):
        """Send a DM notification to the bot owner."""
        if not self.owner_id:
            logger.debug(f"No owner configured, skipping notification: {title}")
            return

        embed = discord.Embed(
            title=f"🚨 {title}",
            description=description,
            color=0xff0000,
            timestamp=datetime.now(timezone.utc)
        )

        if error:
            embed.add_field(
                name="Error Details",
                value=f"```{str(error)[:1000]}```",
                inline=False
            )

            tb = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
            if len(tb) > 1000:
                tb = tb[-1000:]  # Last 1000 chars
            embed.add_field(
                name="Traceback",
                value=f"```{tb}```",
                inline=False
            )

        embed.set_footer(text="Assassin Ring Bot Error Handler")

        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)
            await owner.send(embed=embed)
            logger.info(f"Sent error notification to owner: {title}")
        except discord.DiscordException as e:
            logger.error(f"Failed to send error notification: {e}")

    def should_notify(self, error_type: str, now: Optional[datetime] = None) -> bool:
        """Count the error and report whether its cooldown has passed."""
        now = now or datetime.now(timezone.utc)
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        last = self.last_notification.get(error_type)
        if last is not None and now - last <= timedelta(seconds=self.notification_cooldown):
            return False
        self.last_notification[error_type] = now
        return True

    @staticmethod
    def user_message(error: BaseException) -> str:
        """Pick the message shown to the player for an error."""
        original = getattr(error, "original", None)
        if isinstance(original, RingError):
            return original.message
        if isinstance(error, RingError):
            return error.message
        if isinstance(original, discord.NotFound) and original.code == 10062:
            return "⏱️ The command took too long to process. Please try again."
        if isinstance(error, app_commands.CommandOnCooldown):
            return f"🕒 Command is on cooldown. Try again in {error.retry_after:.1f} seconds."
        if isinstance(error, (app_commands.MissingPermissions, app_commands.CheckFailure)):
            return "🔒 You don't have permission to use this command."
        return "An error occurred while processing your command. The bot owner has been notified."

    async def handle_interaction_error(self, interaction: discord.Interaction, error: Exception):
        """Handle slash command interaction errors."""
        original = getattr(error, "original", error)
        command_name = interaction.command.name if interaction.command else "unknown"

        if isinstance(original, RingError):
            # Game rule failures are the player's to see, not the owner's
            logger.info(f"Ring error in /{command_name}: {original.code}")
        else:
            error_type = type(original).__name__
            logger.error(f"Interaction error in /{command_name}: {error}")
            if self.should_notify(error_type):
                user = f"{interaction.user.display_name} ({interaction.user.id})"
                guild = f"{interaction.guild.name} ({interaction.guild.id})" if interaction.guild else "DM"

                description = (
                    f"**Command:** /{command_name}\n"
                    f"**User:** {user}\n"
                    f"**Guild:** {guild}\n"
                    f"**Error Count:** {self.error_counts[error_type]} (since restart)"
                )
                await self.notify_owner(f"Slash Command Error: {error_type}", description, original)

        error_embed = discord.Embed(
            title="❌ Command Error",
            description=self.user_message(error),
            color=0xff0000
        )
        try:
            if not interaction.response.is_done():
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
            else:
                await interaction.followup.send(embed=error_embed, ephemeral=True)
        except discord.DiscordException as followup_error:
            logger.error(f"Failed to send error message to user: {followup_error}")

    async def send_startup_notification(self):
        """Send notification when bot starts successfully."""
        embed = discord.Embed(
            title="✅ Assassin Ring Bot Started",
            description=f"Bot is online and ready in {len(self.bot.guilds)} guild(s)",
            color=0x00ff00,
            timestamp=datetime.now(timezone.utc)
        )
        if not self.owner_id:
            return
        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)
            await owner.send(embed=embed)
            logger.info("Sent startup notification to owner")
        except discord.DiscordException as e:
            logger.error(f"Failed to send startup notification: {e}")
