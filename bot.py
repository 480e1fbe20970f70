"""Main entry point for the Assassin Ring Discord bot."""

import os
import sys
import asyncio
import logging
from pathlib import Path

import discord
from discord.ext import commands
from dotenv import load_dotenv

from error_handler import ErrorHandler

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(os.getenv('LOG_FILE', 'assassin_ring.log'))
    ]
)
logger = logging.getLogger(__name__)


def load_or_prompt_env():
    """Load environment variables or prompt for token if missing."""
    load_dotenv()

    token = os.getenv('DISCORD_TOKEN')
    if not token:
        logger.warning("DISCORD_TOKEN not found in .env file")
        token = input("Please enter your Discord bot token: ").strip()

        if not token:
            logger.error("No token provided. Exiting.")
            sys.exit(1)

        # Save token to .env file
        env_path = Path('.env')
        with env_path.open('a') as f:
            f.write(f"\nDISCORD_TOKEN={token}\n")
        logger.info("Token saved to .env file")

    return token


class AssassinRingBot(commands.Bot):
    """The main Assassin Ring bot class."""

    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = False  # We only use slash commands

        super().__init__(
            command_prefix='!',  # Unused but required
            intents=intents,
            description="A Discord bot for running an assassin ring game"
        )

        owner_id = int(os.getenv('BOT_OWNER_ID', '0'))
        self.error_handler = ErrorHandler(self, owner_id)

    async def setup_hook(self):
        """Setup hook called when the bot is ready."""
        logger.info("Setting up Assassin Ring bot...")
        self.tree.on_error = self.on_app_command_error

        try:
            await self.load_extension('assassins.commands')
            logger.info("Loaded player commands")
        except commands.ExtensionError as e:
            await self.error_handler.notify_owner("Failed to load player commands", str(e), e)
            logger.error(f"Failed to load player commands: {e}")
            raise

        try:
            await self.load_extension('assassins.admin_commands')
            logger.info("Loaded admin commands")
        except commands.ExtensionError as e:
            await self.error_handler.notify_owner("Failed to load admin commands", str(e), e)
            logger.error(f"Failed to load admin commands: {e}")
            # Players can still play without admin commands

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} command(s)")
        except discord.DiscordException as e:
            await self.error_handler.notify_owner("Failed to sync commands", str(e), e)
            logger.error(f"Failed to sync commands: {e}")

    async def on_ready(self):
        """Called when the bot is ready."""
        logger.info(f"Assassin Ring bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guild(s)")

        try:
            activity = discord.Game(name="Assassins | /assignment")
            await self.change_presence(activity=activity)
            await self.error_handler.send_startup_notification()
        except discord.DiscordException as e:
            logger.error(f"Error in on_ready: {e}")

    async def on_command_error(self, ctx, error):
        """Handle command errors."""
        logger.error(f"Command error: {error}")
        await self.error_handler.notify_owner("Command Error", f"Context: {ctx.command}", error)

    async def on_app_command_error(self, interaction, error):
        """Handle application command errors."""
        await self.error_handler.handle_interaction_error(interaction, error)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors."""
        exc_type, exc_value, exc_traceback = sys.exc_info()
        logger.error(f"Bot error in event {event}", exc_info=True)
        if exc_value:
            context = {"event": event, "args": str(args)[:500]}
            await self.error_handler.notify_owner(f"Bot Error in {event}", str(context), exc_value)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down Assassin Ring bot...")
        await self.error_handler.notify_owner("Bot Shutdown", "Assassin Ring bot is shutting down normally")
        await super().close()


async def main():
    """Main function to run the bot."""
    token = load_or_prompt_env()
    bot = AssassinRingBot()
    try:
        await bot.start(token)
    except Exception as e:
        logger.error(f"Bot crashed: {e}", exc_info=True)
        await bot.error_handler.notify_owner("Bot Crashed", "Fatal error while running", e)
        raise
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
