from __future__ import annotations
import logging
from typing import Optional

import discord
from discord.ext import commands

from levelbot.cogs.leveling import DiscordPlatform
from levelbot.config import Settings, load_settings
from levelbot.context import LevelingContext
from levelbot.db import Database
from levelbot.utils.log import setup_logging

COGS = [
    "levelbot.cogs.leveling",
    "levelbot.services.scheduler",
]

logger = logging.getLogger(__name__)

class LevelBot(commands.Bot):
    def __init__(self, settings: Settings, **kwargs):
        intents = discord.Intents.default()
        intents.members = True
        intents.message_content = True
        super().__init__(
            command_prefix=commands.when_mentioned_or(settings.prefix),
            intents=intents,
            owner_ids=settings.owners or None,
            **kwargs,
        )
        self.settings = settings
        self.db = Database(settings.db_path)
        self.leveling: Optional[LevelingContext] = None

    async def setup_hook(self):
        # DB first
        await self.db.connect()
        await self.db.setup()

        self.leveling = LevelingContext.build(
            self.db, DiscordPlatform(self), cooldown_s=self.settings.xp_cooldown_s
        )

        for ext in COGS:
            try:
                await self.load_extension(ext)
            except Exception as e:
                logger.exception("Failed to load cog %s: %r", ext, e)

    async def close(self):
        await super().close()
        await self.db.close()

    async def on_ready(self):
        logger.info("Logged in as %s (%s)", self.user, self.user.id)

def main():
    settings = load_settings()
    setup_logging(settings.log_level)
    bot = LevelBot(settings)
    bot.run(settings.token, log_handler=None)

if __name__ == "__main__":
    main()
