# levelbot/services/accrual.py
from __future__ import annotations

import asyncio
import logging
import random
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, MutableMapping, Optional

from levelbot.errors import PlatformError, StorageUnavailable
from levelbot.services.platform import Platform
from levelbot.services.policy import PolicyStore, ServerProgressionPolicy
from levelbot.services.progression import ProgressionStore, XpChange, utcnow
from levelbot.services.rewards import LevelRoleReconciler, ReconcileResult

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_S = 300

# (min length, xp range); messages shorter than the first tier earn nothing
LENGTH_TIERS = (
    (101, (20, 30)),
    (51, (15, 25)),
    (10, (10, 20)),
)


@dataclass(frozen=True)
class ChatMessage:
    guild_id: str
    user_id: str
    channel_id: str
    length: int
    timestamp: datetime


@dataclass
class AccrualResult:
    xp: int = 0
    skipped: Optional[str] = None     # "disabled" | "cooldown" | "storage"
    change: Optional[XpChange] = None
    announced: bool = False
    roles: Optional[ReconcileResult] = None

    @property
    def leveled_up(self) -> bool:
        return bool(self.change and self.change.leveled_up)


def base_xp_for_length(length: int, rng: random.Random) -> int:
    for min_len, (lo, hi) in LENGTH_TIERS:
        if length >= min_len:
            return rng.randint(lo, hi)
    return 0


def level_up_text(user_id: str, level: int) -> str:
    return f"Congratulations <@{user_id}>! You've reached level **{level}**!"


class XpAccrualGate:
    """
    Turns chat messages into XP.

    One grant per user per cooldown window. The cooldown is keyed by user only,
    like the XP itself, so chatting in two guilds does not double the rate.
    A message exactly `cooldown_s` after the last grant is still inside the window.
    """

    def __init__(
        self,
        progression: ProgressionStore,
        policies: PolicyStore,
        reconciler: LevelRoleReconciler,
        platform: Platform,
        *,
        cooldown_s: int = DEFAULT_COOLDOWN_S,
        rng: Optional[random.Random] = None,
    ):
        self.progression = progression
        self.policies = policies
        self.reconciler = reconciler
        self.platform = platform
        self.cooldown = timedelta(seconds=cooldown_s)
        self.rng = rng or random.Random()
        self._last_grant: Dict[str, datetime] = {}
        self._locks: MutableMapping[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def on_cooldown(self, user_id, now: datetime) -> bool:
        last = self._last_grant.get(str(user_id))
        return last is not None and now - last <= self.cooldown

    async def handle(self, message: ChatMessage) -> AccrualResult:
        policy = self.policies.get_policy(message.guild_id)
        if not policy.enabled:
            return AccrualResult(skipped="disabled")

        user_id = str(message.user_id)
        async with self._lock_for(user_id):
            if self.on_cooldown(user_id, message.timestamp):
                return AccrualResult(skipped="cooldown")

            try:
                result = await self._grant(message, policy)
            except StorageUnavailable:
                logger.exception("XP grant for %s in guild %s dropped", user_id, message.guild_id)
                return AccrualResult(skipped="storage")
            self._last_grant[user_id] = message.timestamp

        if result.leveled_up:
            result.announced = await self.announce(message, policy, result.change.record.level)
            result.roles = await self.reconciler.reconcile(
                message.guild_id, user_id, result.change.record.level
            )
        return result

    async def _grant(self, message: ChatMessage, policy: ServerProgressionPolicy) -> AccrualResult:
        base = base_xp_for_length(message.length, self.rng)
        if base <= 0:
            return AccrualResult()
        boost = await self.progression.get_boost(message.user_id, message.timestamp)
        xp = int(base * policy.xp_multiplier * boost)
        if xp <= 0:
            return AccrualResult()
        change = await self.progression.add_experience(message.user_id, xp)
        return AccrualResult(xp=xp, change=change)

    async def announce(self, message: ChatMessage, policy: ServerProgressionPolicy, level: int) -> bool:
        text = level_up_text(message.user_id, level)
        mode = policy.announce_mode
        try:
            if mode == "current":
                await self.platform.deliver_message(message.channel_id, text)
                return True
            if mode == "dm":
                try:
                    await self.platform.direct_message(message.user_id, text)
                except PlatformError:
                    # DMs closed
                    await self.platform.deliver_message(message.channel_id, text)
                return True
            if mode == "channel" and policy.announce_channel_id:
                await self.platform.deliver_message(policy.announce_channel_id, text)
                return True
        except PlatformError as e:
            logger.warning("level-up announcement for %s in guild %s failed: %s", message.user_id, message.guild_id, e)
        return False

    def prune(self, now: Optional[datetime] = None) -> int:
        """Forget users whose cooldown has run out. Returns how many were dropped."""
        now = now or utcnow()
        stale = [uid for uid, ts in self._last_grant.items() if now - ts > self.cooldown]
        for uid in stale:
            del self._last_grant[uid]
        return len(stale)
