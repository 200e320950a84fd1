import os
import unittest
from datetime import timedelta
from unittest import mock

from levelbot.config import load_settings
from levelbot.utils.durations import humanize, parse_duration


class LoadSettingsTests(unittest.TestCase):
    def setUp(self):
        # keep a developer .env out of the picture
        patcher = mock.patch("dotenv.load_dotenv")
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_defaults(self):
        with mock.patch.dict(os.environ, {"DISCORD_TOKEN": "abc"}, clear=True):
            s = load_settings()
        self.assertEqual(s.token, "abc")
        self.assertEqual(s.owners, set())
        self.assertEqual(s.db_path, "levelbot.db")
        self.assertEqual(s.prefix, ",")
        self.assertEqual(s.xp_cooldown_s, 300)
        self.assertEqual(s.log_level, "INFO")

    def test_overrides(self):
        env = {
            "DISCORD_TOKEN": "abc",
            "BOT_OWNERS": "1, 2",
            "DATABASE_PATH": "/tmp/x.db",
            "COMMAND_PREFIX": "!",
            "XP_COOLDOWN_SECONDS": "60",
            "LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            s = load_settings()
        self.assertEqual(s.owners, {1, 2})
        self.assertEqual((s.db_path, s.prefix, s.xp_cooldown_s, s.log_level), ("/tmp/x.db", "!", 60, "DEBUG"))

    def test_missing_token(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(RuntimeError):
                load_settings()

    def test_bad_cooldown(self):
        with mock.patch.dict(os.environ, {"DISCORD_TOKEN": "abc", "XP_COOLDOWN_SECONDS": "soon"}, clear=True):
            with self.assertRaises(RuntimeError):
                load_settings()


class DurationTests(unittest.TestCase):
    def test_plain_number_means_hours(self):
        self.assertEqual(parse_duration("12"), timedelta(hours=12))

    def test_units(self):
        self.assertEqual(parse_duration("90m"), timedelta(minutes=90))
        self.assertEqual(parse_duration("1d12h"), timedelta(hours=36))
        self.assertEqual(parse_duration("1w"), timedelta(days=7))

    def test_invalid(self):
        for bad in ("", "soon", "0h"):
            with self.assertRaises(ValueError):
                parse_duration(bad)

    def test_humanize(self):
        self.assertEqual(humanize(timedelta(hours=1)), "1 hour")
        self.assertEqual(humanize(timedelta(hours=26, minutes=30)), "26 hours 30 minutes")


if __name__ == "__main__":
    unittest.main()
