from __future__ import annotations
import logging
from datetime import datetime, timezone
from discord.ext import tasks, commands

from levelbot.context import LevelingContext
from levelbot.errors import StorageUnavailable

log = logging.getLogger(__name__)

class Scheduler(commands.Cog):
    """Background housekeeping for the leveling services."""

    def __init__(self, bot: commands.Bot, ctx: LevelingContext):
        self.bot = bot
        self.leveling = ctx

    async def cog_load(self):
        self.housekeeping_loop.start()

    def cog_unload(self):
        self.housekeeping_loop.cancel()

    async def run_once(self, now: datetime) -> None:
        pruned = self.leveling.gate.prune(now)
        try:
            expired = await self.leveling.progression.clear_expired_boosts(now)
        except StorageUnavailable:
            log.exception("could not clear expired XP boosts")
            expired = 0
        if pruned or expired:
            log.debug("housekeeping: %d cooldown(s) pruned, %d boost(s) expired", pruned, expired)

    @tasks.loop(minutes=10)
    async def housekeeping_loop(self):
        await self.run_once(datetime.now(timezone.utc))

    @housekeeping_loop.before_loop
    async def before_loop(self):
        await self.bot.wait_until_ready()

async def setup(bot: commands.Bot):
    await bot.add_cog(Scheduler(bot, bot.leveling))
