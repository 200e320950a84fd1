# levelbot/services/progression.py
from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, MutableMapping, Optional

from levelbot.db import Database
from levelbot.errors import InvalidPolicyValue
from levelbot.services.levels import level_for_xp

logger = logging.getLogger(__name__)

BOOST_MIN = 1.1
BOOST_MAX = 3.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def parse_iso(ts: Optional[str]) -> Optional[datetime]:
    if not ts:
        return None
    try:
        return datetime.fromisoformat(ts)
    except ValueError:
        return None


@dataclass
class UserProgression:
    user_id: str
    experience: int = 0
    level: int = 1

    @classmethod
    def from_row(cls, row) -> "UserProgression":
        return cls(user_id=str(row["user_id"]), experience=int(row["xp"]), level=int(row["level"]))


@dataclass
class XpChange:
    record: UserProgression
    old_level: int
    leveled_up: bool
    new_level: Optional[int] = None   # only set when leveled_up


class ProgressionStore:
    """
    XP and level per user, shared by every guild the bot is in.
    `level` is never written on its own: it is always derived from `xp`.
    Every method may raise StorageUnavailable; nothing is retried here.

    Writes to one user's XP are serialised by a per-user lock, so concurrent
    grants (chat XP, admin commands) each see the previous total.
    """

    def __init__(self, db: Database):
        self.db = db
        # a lock lives only while someone holds or waits on it
        self._locks: MutableMapping[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _fetch(self, user_id: str) -> Optional[UserProgression]:
        row = await self.db.fetchrow(
            "SELECT user_id, xp, level FROM user_progression WHERE user_id=?", user_id
        )
        return UserProgression.from_row(row) if row else None

    async def get_or_create(self, user_id) -> UserProgression:
        user_id = str(user_id)
        found = await self._fetch(user_id)
        if found:
            return found
        now = iso(utcnow())
        await self.db.execute(
            "INSERT OR IGNORE INTO user_progression(user_id, xp, level, created_at, updated_at) "
            "VALUES(?, 0, 1, ?, ?)",
            user_id, now, now
        )
        return UserProgression(user_id=user_id)

    async def _write(self, user_id: str, xp: int) -> UserProgression:
        level = level_for_xp(xp)
        await self.db.execute(
            "UPDATE user_progression SET xp=?, level=?, updated_at=? WHERE user_id=?",
            xp, level, iso(utcnow()), user_id
        )
        return UserProgression(user_id=user_id, experience=xp, level=level)

    async def add_experience(self, user_id, delta: int) -> XpChange:
        """Add (or with a negative delta, remove) XP. The total never drops below 0."""
        user_id = str(user_id)
        async with self._lock_for(user_id):
            current = await self.get_or_create(user_id)
            return await self._change(current, max(0, current.experience + int(delta)))

    async def _change(self, current: UserProgression, new_xp: int) -> XpChange:
        record = await self._write(current.user_id, new_xp)
        leveled_up = record.level > current.level
        if leveled_up:
            logger.info("user %s reached level %s (%s XP)", record.user_id, record.level, record.experience)
        return XpChange(
            record=record,
            old_level=current.level,
            leveled_up=leveled_up,
            new_level=record.level if leveled_up else None,
        )

    async def set_absolute(self, user_id, experience: int) -> XpChange:
        """Admin override for a user's total XP; shares add_experience's write path so the level follows."""
        user_id = str(user_id)
        async with self._lock_for(user_id):
            current = await self.get_or_create(user_id)
            return await self._change(current, max(0, int(experience)))

    async def reset_progression(self, user_id) -> UserProgression:
        user_id = str(user_id)
        async with self._lock_for(user_id):
            current = await self.get_or_create(user_id)
            return await self._write(current.user_id, 0)

    # -------------------- ranking --------------------

    async def get_rank(self, user_id) -> int:
        """1-indexed position ordered by level desc, xp desc, user id asc."""
        me = await self.get_or_create(user_id)
        row = await self.db.fetchrow(
            "SELECT COUNT(*) AS above FROM user_progression "
            "WHERE level > ? "
            "   OR (level = ? AND xp > ?) "
            "   OR (level = ? AND xp = ? AND user_id < ?)",
            me.level, me.level, me.experience, me.level, me.experience, me.user_id
        )
        return int(row["above"]) + 1

    async def get_leaderboard(self, limit: int = 10) -> List[UserProgression]:
        if limit <= 0:
            return []
        rows = await self.db.fetchall(
            "SELECT user_id, xp, level FROM user_progression WHERE xp > 0 "
            "ORDER BY level DESC, xp DESC, user_id ASC LIMIT ?",
            int(limit)
        )
        return [UserProgression.from_row(r) for r in rows]

    # -------------------- personal boosts --------------------

    async def set_boost(self, user_id, multiplier: float, expires_at: datetime) -> float:
        multiplier = round(float(multiplier), 1)
        if not BOOST_MIN <= multiplier <= BOOST_MAX:
            raise InvalidPolicyValue("xp_boost", f"boost must be between {BOOST_MIN}x and {BOOST_MAX}x")
        current = await self.get_or_create(user_id)
        await self.db.execute(
            "UPDATE user_progression SET xp_boost=?, xp_boost_expires_at=?, updated_at=? WHERE user_id=?",
            multiplier, iso(expires_at), iso(utcnow()), current.user_id
        )
        return multiplier

    async def get_boost(self, user_id, now: Optional[datetime] = None) -> float:
        row = await self.db.fetchrow(
            "SELECT xp_boost, xp_boost_expires_at FROM user_progression WHERE user_id=?", str(user_id)
        )
        if not row or row["xp_boost"] is None:
            return 1.0
        expires = parse_iso(row["xp_boost_expires_at"])
        if expires is None or expires <= (now or utcnow()):
            return 1.0
        return float(row["xp_boost"])

    async def clear_expired_boosts(self, now: Optional[datetime] = None) -> int:
        cutoff = iso(now or utcnow())
        row = await self.db.fetchrow(
            "SELECT COUNT(*) AS n FROM user_progression "
            "WHERE xp_boost IS NOT NULL AND xp_boost_expires_at <= ?",
            cutoff
        )
        count = int(row["n"])
        if count:
            await self.db.execute(
                "UPDATE user_progression SET xp_boost=NULL, xp_boost_expires_at=NULL "
                "WHERE xp_boost IS NOT NULL AND xp_boost_expires_at <= ?",
                cutoff
            )
        return count
