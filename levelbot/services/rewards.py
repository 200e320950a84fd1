# levelbot/services/rewards.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from levelbot.errors import PlatformError, RoleGrantFailed
from levelbot.services.platform import Platform
from levelbot.services.policy import LevelRole, PolicyStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    granted: List[LevelRole] = field(default_factory=list)
    failed: List[RoleGrantFailed] = field(default_factory=list)
    missing: List[LevelRole] = field(default_factory=list)   # configured but deleted on Discord


class LevelRoleReconciler:
    """
    Hands out level reward roles. Every role the member has earned and does not
    hold yet is granted, not only the one for the level just reached, so a
    multi-level jump or a missed event is caught up on the next level up.
    """

    def __init__(self, policies: PolicyStore, platform: Platform):
        self.policies = policies
        self.platform = platform

    def earned_roles(self, guild_id, level: int) -> List[LevelRole]:
        return [lr for lr in self.policies.list_level_roles(guild_id) if lr.level <= level]

    async def reconcile(self, guild_id, user_id, new_level: int) -> ReconcileResult:
        guild_id, user_id = str(guild_id), str(user_id)
        result = ReconcileResult()
        earned = self.earned_roles(guild_id, new_level)
        if not earned:
            return result

        try:
            held = await self.platform.member_role_ids(guild_id, user_id)
        except PlatformError as e:
            logger.warning("cannot read roles of %s in guild %s: %s", user_id, guild_id, e)
            return result

        for lr in earned:
            if lr.role_id in held:
                continue
            try:
                name = await self.platform.fetch_role(guild_id, lr.role_id)
            except PlatformError as e:
                logger.warning("cannot fetch level role %s in guild %s: %s", lr.role_id, guild_id, e)
                name = None
            if name is None:
                result.missing.append(lr)
                continue
            try:
                await self.platform.grant_role(guild_id, user_id, lr.role_id)
            except RoleGrantFailed as e:
                logger.warning("%s", e)
                result.failed.append(e)
            except PlatformError as e:
                failure = RoleGrantFailed(guild_id, user_id, lr.role_id, str(e))
                logger.warning("%s", failure)
                result.failed.append(failure)
            else:
                result.granted.append(lr)

        if result.granted:
            logger.info(
                "granted level roles %s to %s in guild %s",
                ", ".join(lr.role_id for lr in result.granted), user_id, guild_id
            )
        return result
