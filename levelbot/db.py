from __future__ import annotations
import aiosqlite
from typing import Iterable, Optional, Sequence, Tuple

from levelbot.errors import StorageUnavailable

SCHEMA = """
CREATE TABLE IF NOT EXISTS user_progression (
  user_id             TEXT PRIMARY KEY,
  xp                  INTEGER NOT NULL DEFAULT 0,
  level               INTEGER NOT NULL DEFAULT 1,
  xp_boost            REAL,
  xp_boost_expires_at TEXT,
  created_at          TEXT NOT NULL,
  updated_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_user_progression_rank
  ON user_progression(level DESC, xp DESC, user_id ASC);

CREATE TABLE IF NOT EXISTS level_policy (
  guild_id            TEXT PRIMARY KEY,
  enabled             INTEGER NOT NULL DEFAULT 1,
  xp_multiplier       REAL NOT NULL DEFAULT 1.0,
  announce_mode       TEXT NOT NULL DEFAULT 'current',
  announce_channel_id TEXT
);

CREATE TABLE IF NOT EXISTS level_roles (
  guild_id  TEXT NOT NULL,
  level     INTEGER NOT NULL,
  role_id   TEXT NOT NULL,
  PRIMARY KEY (guild_id, level)
);
"""


class Database:
    def __init__(self, path: str = "levelbot.db"):
        self.path = path
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageUnavailable("database is not connected")
        return self._db

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> None:
        try:
            self._db = await aiosqlite.connect(self.path)
            self._db.row_factory = aiosqlite.Row
            if self.path != ":memory:":
                await self._db.execute("PRAGMA journal_mode=WAL;")
            await self._db.execute("PRAGMA foreign_keys=ON;")
            await self._db.commit()
        except aiosqlite.Error as e:
            raise StorageUnavailable(f"cannot open {self.path}: {e}") from e

    async def setup(self) -> None:
        try:
            await self.db.executescript(SCHEMA)
            await self.db.commit()
        except aiosqlite.Error as e:
            raise StorageUnavailable(f"schema setup failed: {e}") from e

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def fetchrow(self, query: str, *args):
        try:
            async with self.db.execute(query, args) as cur:
                return await cur.fetchone()
        except aiosqlite.Error as e:
            raise StorageUnavailable(str(e)) from e

    async def fetchall(self, query: str, *args):
        try:
            async with self.db.execute(query, args) as cur:
                return await cur.fetchall()
        except aiosqlite.Error as e:
            raise StorageUnavailable(str(e)) from e

    async def execute(self, query: str, *args) -> None:
        try:
            await self.db.execute(query, args)
            await self.db.commit()
        except aiosqlite.Error as e:
            raise StorageUnavailable(str(e)) from e

    async def execute_batch(self, statements: Iterable[Tuple[str, Sequence]]) -> None:
        """Run several statements and commit once; rolls back if any of them fails."""
        try:
            for query, args in statements:
                await self.db.execute(query, tuple(args))
            await self.db.commit()
        except aiosqlite.Error as e:
            try:
                await self.db.rollback()
            except aiosqlite.Error:
                pass
            raise StorageUnavailable(str(e)) from e
