# levelbot/services/policy.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from levelbot.db import Database
from levelbot.errors import InvalidPolicyValue

logger = logging.getLogger(__name__)

MULTIPLIER_MIN = 0.5
MULTIPLIER_MAX = 3.0

ANNOUNCE_MODES = ("current", "dm", "channel", "disabled")


@dataclass(frozen=True)
class LevelRole:
    level: int
    role_id: str


@dataclass
class ServerProgressionPolicy:
    enabled: bool = True
    xp_multiplier: float = 1.0
    announce_mode: str = "current"
    announce_channel_id: Optional[str] = None
    level_roles: List[LevelRole] = field(default_factory=list)


def _validate(policy: ServerProgressionPolicy, name: str, value: Any) -> Any:
    """Return the normalised value for `name` or raise InvalidPolicyValue."""
    if name == "enabled":
        if not isinstance(value, bool):
            raise InvalidPolicyValue(name, "enabled must be true or false")
        return value

    if name == "xp_multiplier":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidPolicyValue(name, "the XP multiplier must be a number")
        value = float(value)
        if not MULTIPLIER_MIN <= value <= MULTIPLIER_MAX:
            raise InvalidPolicyValue(
                name, f"the XP multiplier must be between {MULTIPLIER_MIN}x and {MULTIPLIER_MAX}x"
            )
        return value

    if name == "announce_mode":
        if value not in ANNOUNCE_MODES:
            raise InvalidPolicyValue(name, f"announce mode must be one of: {', '.join(ANNOUNCE_MODES)}")
        if value == "channel" and not policy.announce_channel_id:
            raise InvalidPolicyValue(name, "channel mode needs an announcement channel")
        return value

    if name == "announce_channel_id":
        if value is None:
            if policy.announce_mode == "channel":
                raise InvalidPolicyValue(name, "cannot clear the channel while channel mode is on")
            return None
        return str(value)

    raise InvalidPolicyValue(name, f"unknown leveling setting '{name}'")


class PolicyStore:
    """
    Per-guild leveling settings kept in memory.

    Reads never touch the database. When a Database is given, `load()` fills the
    map at startup and `save()` writes one guild back; without one, settings are
    lost on restart.
    """

    def __init__(self, db: Optional[Database] = None):
        self.db = db
        self._policies: Dict[str, ServerProgressionPolicy] = {}

    def get_policy(self, guild_id) -> ServerProgressionPolicy:
        key = str(guild_id)
        policy = self._policies.get(key)
        if policy is None:
            policy = ServerProgressionPolicy()
            self._policies[key] = policy
        return policy

    def set_policy_field(self, guild_id, name: str, value: Any) -> None:
        policy = self.get_policy(guild_id)
        value = _validate(policy, name, value)
        setattr(policy, name, value)
        logger.info("leveling setting %s=%r for guild %s", name, value, guild_id)

    def set_announcements(self, guild_id, mode: str, channel_id=None) -> None:
        if mode not in ANNOUNCE_MODES:
            raise InvalidPolicyValue("announce_mode", f"announce mode must be one of: {', '.join(ANNOUNCE_MODES)}")
        policy = self.get_policy(guild_id)
        if mode == "channel" and channel_id is None and not policy.announce_channel_id:
            raise InvalidPolicyValue("announce_channel_id", "channel mode needs an announcement channel")
        if channel_id is not None:
            policy.announce_channel_id = str(channel_id)
        policy.announce_mode = mode
        logger.info("leveling announcements for guild %s: %s (%s)", guild_id, mode, policy.announce_channel_id)

    # -------------------- level roles --------------------

    def add_level_role(self, guild_id, level: int, role_id) -> None:
        if level < 1:
            raise InvalidPolicyValue("level_roles", "reward levels start at 1")
        policy = self.get_policy(guild_id)
        roles = [lr for lr in policy.level_roles if lr.level != level]
        roles.append(LevelRole(level=int(level), role_id=str(role_id)))
        roles.sort(key=lambda lr: lr.level)
        policy.level_roles = roles
        logger.info("level role for level %s in guild %s -> %s", level, guild_id, role_id)

    def remove_level_role(self, guild_id, level: int) -> bool:
        policy = self.get_policy(guild_id)
        before = len(policy.level_roles)
        policy.level_roles = [lr for lr in policy.level_roles if lr.level != level]
        removed = len(policy.level_roles) < before
        if removed:
            logger.info("removed level role for level %s in guild %s", level, guild_id)
        return removed

    def list_level_roles(self, guild_id) -> List[LevelRole]:
        return list(self.get_policy(guild_id).level_roles)

    # -------------------- persistence --------------------

    async def load(self) -> int:
        if self.db is None:
            return 0
        rows = await self.db.fetchall(
            "SELECT guild_id, enabled, xp_multiplier, announce_mode, announce_channel_id FROM level_policy"
        )
        for r in rows:
            self._policies[str(r["guild_id"])] = ServerProgressionPolicy(
                enabled=bool(int(r["enabled"])),
                xp_multiplier=float(r["xp_multiplier"]),
                announce_mode=r["announce_mode"] if r["announce_mode"] in ANNOUNCE_MODES else "current",
                announce_channel_id=r["announce_channel_id"],
            )
        role_rows = await self.db.fetchall(
            "SELECT guild_id, level, role_id FROM level_roles ORDER BY guild_id, level ASC"
        )
        for r in role_rows:
            self.get_policy(r["guild_id"]).level_roles.append(
                LevelRole(level=int(r["level"]), role_id=str(r["role_id"]))
            )
        logger.info("loaded leveling settings for %d guild(s)", len(self._policies))
        return len(self._policies)

    async def save(self, guild_id) -> None:
        if self.db is None:
            return
        key = str(guild_id)
        policy = self.get_policy(key)
        statements = [
            (
                "INSERT INTO level_policy(guild_id, enabled, xp_multiplier, announce_mode, announce_channel_id) "
                "VALUES(?, ?, ?, ?, ?) "
                "ON CONFLICT(guild_id) DO UPDATE SET enabled=excluded.enabled, "
                "xp_multiplier=excluded.xp_multiplier, announce_mode=excluded.announce_mode, "
                "announce_channel_id=excluded.announce_channel_id",
                (key, int(policy.enabled), policy.xp_multiplier, policy.announce_mode, policy.announce_channel_id),
            ),
            ("DELETE FROM level_roles WHERE guild_id=?", (key,)),
        ]
        statements += [
            ("INSERT INTO level_roles(guild_id, level, role_id) VALUES(?, ?, ?)", (key, lr.level, lr.role_id))
            for lr in policy.level_roles
        ]
        await self.db.execute_batch(statements)
