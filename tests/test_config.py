import logging
import os
import unittest
from unittest import mock

from infrastructure.config import BotConfig
from infrastructure.logging_setup import setup_logging


class BotConfigTests(unittest.TestCase):
    def load(self, **env):
        with mock.patch("infrastructure.config.load_dotenv"), mock.patch.dict(os.environ, env, clear=True):
            return BotConfig.from_env()

    def test_defaults(self):
        config = self.load()
        self.assertIsNone(config.discord_token)
        self.assertEqual(config.database_path, "vouch_points.db")
        self.assertIsNone(config.database_url)
        self.assertEqual(config.provider_role_name, "Provider")
        self.assertEqual(config.blackjack_cooldown, 10.0)
        self.assertEqual(config.slots_cooldown, 5.0)
        self.assertEqual(config.blackjack_timeout, 30.0)
        self.assertEqual(config.log_level, "INFO")

    def test_reads_environment(self):
        config = self.load(
            DISCORD_TOKEN="abc",
            DATABASE_URL="postgresql://bot@db/vouches",
            PROVIDER_ROLE_ID=" 42 ",
            CASINO_CHANNEL_ID="555",
            SLOTS_COOLDOWN_SECONDS="2.5",
            LOG_LEVEL="debug",
        )
        self.assertEqual(config.discord_token, "abc")
        self.assertEqual(config.database_url, "postgresql://bot@db/vouches")
        self.assertEqual(config.provider_role_id, "42")
        self.assertEqual(config.casino_channel_id, "555")
        self.assertEqual(config.slots_cooldown, 2.5)
        self.assertEqual(config.log_level, "DEBUG")

    def test_blank_values_fall_back(self):
        config = self.load(DISCORD_TOKEN="  ", ROULETTE_COOLDOWN_SECONDS="")
        self.assertIsNone(config.discord_token)
        self.assertEqual(config.roulette_cooldown, 10.0)

    def test_bad_number_is_reported(self):
        with self.assertRaises(RuntimeError) as ctx:
            self.load(BLACKJACK_TIMEOUT_SECONDS="soon")
        self.assertIn("BLACKJACK_TIMEOUT_SECONDS", str(ctx.exception))


class LoggingSetupTests(unittest.TestCase):
    def setUp(self) -> None:
        root = logging.getLogger()
        self._saved = (root.level, list(root.handlers), logging.getLogger("discord").level)

    def tearDown(self) -> None:
        root = logging.getLogger()
        level, handlers, discord_level = self._saved
        for handler in list(root.handlers):
            if handler not in handlers:
                root.removeHandler(handler)
        root.setLevel(level)
        logging.getLogger("discord").setLevel(discord_level)

    def test_repeated_setup_installs_one_handler(self):
        setup_logging("INFO")
        setup_logging("WARNING")

        ours = [h for h in logging.getLogger().handlers if getattr(h, "_vouchbot", False)]
        self.assertEqual(len(ours), 1)
        self.assertEqual(logging.getLogger().level, logging.WARNING)
        self.assertEqual(logging.getLogger("discord").level, logging.WARNING)

    def test_unknown_level_falls_back_to_info(self):
        setup_logging("chatty")
        self.assertEqual(logging.getLogger().level, logging.INFO)


if __name__ == "__main__":
    unittest.main()
