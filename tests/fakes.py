from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

from levelbot.db import Database
from levelbot.errors import PlatformError, RoleGrantFailed


class LowRoll:
    """Stands in for random.Random and always rolls the bottom of the range."""

    def randint(self, a: int, b: int) -> int:
        return a


class HighRoll:
    def randint(self, a: int, b: int) -> int:
        return b


class FakePlatform:
    def __init__(self):
        self.channel_messages: List[Tuple[str, str]] = []
        self.direct_messages: List[Tuple[str, str]] = []
        self.granted: List[Tuple[str, str, str]] = []
        self.roles: Dict[str, str] = {}                 # role_id -> name
        self.member_roles: Dict[str, Set[str]] = {}     # user_id -> role ids
        self.dm_closed = False
        self.channels_down = False
        self.refuse_roles: Set[str] = set()

    async def deliver_message(self, channel_id: str, content: str) -> None:
        if self.channels_down:
            raise PlatformError("missing access")
        self.channel_messages.append((channel_id, content))

    async def direct_message(self, user_id: str, content: str) -> None:
        if self.dm_closed:
            raise PlatformError("cannot send messages to this user")
        self.direct_messages.append((user_id, content))

    async def fetch_role(self, guild_id: str, role_id: str) -> Optional[str]:
        return self.roles.get(role_id)

    async def member_role_ids(self, guild_id: str, user_id: str) -> Set[str]:
        return set(self.member_roles.get(user_id, set()))

    async def grant_role(self, guild_id: str, user_id: str, role_id: str) -> None:
        if role_id in self.refuse_roles:
            raise RoleGrantFailed(guild_id, user_id, role_id, "missing permissions")
        self.granted.append((guild_id, user_id, role_id))
        self.member_roles.setdefault(user_id, set()).add(role_id)


async def memory_db() -> Database:
    db = Database(":memory:")
    await db.connect()
    await db.setup()
    return db
