from __future__ import annotations


class LevelingError(Exception):
    """Base class for everything the leveling services raise on purpose."""


class StorageUnavailable(LevelingError):
    """The progression database could not be reached or rejected a query."""


class InvalidPolicyValue(LevelingError):
    """An admin tried to store a value outside its allowed range."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class PlatformError(LevelingError):
    """Discord refused or failed a request made on behalf of the leveling engine."""


class RoleGrantFailed(PlatformError):
    def __init__(self, guild_id: str, user_id: str, role_id: str, reason: str = ""):
        super().__init__(f"could not grant role {role_id} to {user_id} in {guild_id}: {reason or 'unknown error'}")
        self.guild_id = guild_id
        self.user_id = user_id
        self.role_id = role_id
        self.reason = reason
