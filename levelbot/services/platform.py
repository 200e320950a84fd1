from __future__ import annotations

from typing import Optional, Protocol, Set


class Platform(Protocol):
    """
    What the leveling services need from Discord. The Leveling cog provides the
    real implementation; tests pass a fake.

    Failed calls raise PlatformError (grant_role raises RoleGrantFailed).
    """

    async def deliver_message(self, channel_id: str, content: str) -> None: ...

    async def direct_message(self, user_id: str, content: str) -> None: ...

    async def fetch_role(self, guild_id: str, role_id: str) -> Optional[str]:
        """Role name, or None when the role no longer exists."""
        ...

    async def member_role_ids(self, guild_id: str, user_id: str) -> Set[str]: ...

    async def grant_role(self, guild_id: str, user_id: str, role_id: str) -> None: ...
