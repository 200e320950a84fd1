import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from fakes import memory_db

from levelbot.errors import InvalidPolicyValue, StorageUnavailable
from levelbot.services.progression import ProgressionStore, iso

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class ProgressionStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = await memory_db()
        self.store = ProgressionStore(self.db)

    async def asyncTearDown(self):
        await self.db.close()

    async def _insert(self, user_id, xp, level):
        stamp = iso(NOW)
        await self.db.execute(
            "INSERT INTO user_progression(user_id, xp, level, created_at, updated_at) VALUES(?, ?, ?, ?, ?)",
            user_id, xp, level, stamp, stamp
        )

    async def test_get_or_create_starts_at_level_one(self):
        rec = await self.store.get_or_create("42")
        self.assertEqual((rec.user_id, rec.experience, rec.level), ("42", 0, 1))
        again = await self.store.get_or_create(42)
        self.assertEqual(again, rec)

    async def test_first_grant_levels_up(self):
        change = await self.store.add_experience("u", 150)
        self.assertEqual(change.record.experience, 150)
        self.assertEqual(change.record.level, 2)
        self.assertTrue(change.leveled_up)
        self.assertEqual(change.new_level, 2)
        self.assertEqual(change.old_level, 1)

    async def test_small_grants_accumulate_without_level_up(self):
        await self.store.add_experience("u", 30)
        change = await self.store.add_experience("u", 30)
        self.assertEqual(change.record.experience, 60)
        self.assertEqual(change.record.level, 1)
        self.assertFalse(change.leveled_up)
        self.assertIsNone(change.new_level)

    async def test_negative_delta_clamps_at_zero_and_lowers_level(self):
        await self.store.add_experience("u", 450)
        change = await self.store.add_experience("u", -1000)
        self.assertEqual(change.record.experience, 0)
        self.assertEqual(change.record.level, 1)
        self.assertFalse(change.leveled_up)
        stored = await self.store.get_or_create("u")
        self.assertEqual(stored.level, 1)

    async def test_reset_is_idempotent(self):
        await self.store.add_experience("u", 900)
        first = await self.store.reset_progression("u")
        second = await self.store.reset_progression("u")
        self.assertEqual((first.experience, first.level), (0, 1))
        self.assertEqual(first, second)

    async def test_set_absolute_keeps_level_in_sync(self):
        change = await self.store.set_absolute("u", 400)
        self.assertEqual((change.record.experience, change.record.level), (400, 3))
        self.assertTrue(change.leveled_up)
        change = await self.store.set_absolute("u", 120)
        self.assertEqual((change.record.experience, change.record.level), (120, 2))
        self.assertFalse(change.leveled_up)

    async def test_concurrent_grants_all_land(self):
        await asyncio.gather(self.store.add_experience("u", 10), self.store.add_experience("u", 20))
        record = await self.store.get_or_create("u")
        self.assertEqual((record.experience, record.level), (30, 1))

        changes = await asyncio.gather(*(self.store.add_experience("u", 25) for _ in range(4)))
        record = await self.store.get_or_create("u")
        self.assertEqual((record.experience, record.level), (130, 2))
        self.assertEqual(sum(c.leveled_up for c in changes), 1)

    async def test_set_absolute_waits_for_a_pending_grant(self):
        await asyncio.gather(self.store.add_experience("u", 50), self.store.set_absolute("u", 400))
        self.assertEqual((await self.store.get_or_create("u")).experience, 400)

    async def test_leaderboard_orders_by_level_then_xp(self):
        await self._insert("A", 500, 3)
        await self._insert("B", 400, 3)
        await self._insert("C", 100, 5)
        top = await self.store.get_leaderboard(3)
        self.assertEqual([r.user_id for r in top], ["C", "A", "B"])

    async def test_leaderboard_limit_and_zero_xp_users(self):
        await self._insert("A", 500, 3)
        await self._insert("B", 400, 3)
        await self.store.get_or_create("nobody")
        self.assertEqual([r.user_id for r in await self.store.get_leaderboard(10)], ["A", "B"])
        self.assertEqual([r.user_id for r in await self.store.get_leaderboard(1)], ["A"])
        self.assertEqual(await self.store.get_leaderboard(0), [])

    async def test_rank_breaks_ties_by_user_id(self):
        await self._insert("A", 500, 3)
        await self._insert("B", 400, 3)
        await self._insert("C", 100, 5)
        await self._insert("D", 400, 3)
        self.assertEqual(await self.store.get_rank("C"), 1)
        self.assertEqual(await self.store.get_rank("A"), 2)
        self.assertEqual(await self.store.get_rank("B"), 3)
        self.assertEqual(await self.store.get_rank("D"), 4)

    async def test_rank_of_unknown_user_creates_them_last(self):
        await self._insert("A", 500, 3)
        self.assertEqual(await self.store.get_rank("new"), 2)

    async def test_boost_active_until_expiry(self):
        applied = await self.store.set_boost("u", 1.54, NOW + timedelta(hours=2))
        self.assertEqual(applied, 1.5)
        self.assertEqual(await self.store.get_boost("u", NOW), 1.5)
        self.assertEqual(await self.store.get_boost("u", NOW + timedelta(hours=3)), 1.0)
        self.assertEqual(await self.store.get_boost("someone-else", NOW), 1.0)

    async def test_boost_range_is_enforced(self):
        with self.assertRaises(InvalidPolicyValue):
            await self.store.set_boost("u", 5, NOW + timedelta(hours=1))
        with self.assertRaises(InvalidPolicyValue):
            await self.store.set_boost("u", 1.0, NOW + timedelta(hours=1))

    async def test_clear_expired_boosts(self):
        await self.store.set_boost("old", 2.0, NOW - timedelta(minutes=1))
        await self.store.set_boost("fresh", 2.0, NOW + timedelta(hours=1))
        self.assertEqual(await self.store.clear_expired_boosts(NOW), 1)
        self.assertEqual(await self.store.clear_expired_boosts(NOW), 0)
        self.assertEqual(await self.store.get_boost("fresh", NOW), 2.0)

    async def test_closed_database_raises_storage_unavailable(self):
        await self.db.close()
        with self.assertRaises(StorageUnavailable):
            await self.store.add_experience("u", 10)


if __name__ == "__main__":
    unittest.main()
