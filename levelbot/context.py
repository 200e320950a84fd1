from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

from levelbot.db import Database
from levelbot.services.accrual import DEFAULT_COOLDOWN_S, XpAccrualGate
from levelbot.services.platform import Platform
from levelbot.services.policy import PolicyStore
from levelbot.services.progression import ProgressionStore, XpChange
from levelbot.services.rewards import LevelRoleReconciler, ReconcileResult


@dataclass
class LevelingContext:
    """Everything the leveling handlers share. Built once per bot (or per test)."""
    progression: ProgressionStore
    policies: PolicyStore
    reconciler: LevelRoleReconciler
    gate: XpAccrualGate

    @classmethod
    def build(cls, db: Database, platform: Platform, *, cooldown_s: int = DEFAULT_COOLDOWN_S, rng=None) -> "LevelingContext":
        progression = ProgressionStore(db)
        policies = PolicyStore(db)
        reconciler = LevelRoleReconciler(policies, platform)
        gate = XpAccrualGate(progression, policies, reconciler, platform, cooldown_s=cooldown_s, rng=rng)
        return cls(progression=progression, policies=policies, reconciler=reconciler, gate=gate)

    async def adjust_experience(self, guild_id, user_id, amount: int) -> Tuple[XpChange, Optional[ReconcileResult]]:
        """Admin XP change. A level up hands out reward roles the same way chat XP does."""
        change = await self.progression.add_experience(user_id, amount)
        roles = None
        if change.leveled_up:
            roles = await self.reconciler.reconcile(str(guild_id), str(user_id), change.record.level)
        return change, roles
