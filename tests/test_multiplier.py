import unittest

from application.multiplier import (
    ANNOUNCE_CHANNEL_KEY,
    EXPIRES_AT_KEY,
    EXPIRY_ANNOUNCEMENT,
    MULTIPLIER_KEY,
    NEVER_EXPIRES,
    MultiplierManager,
)
from fakes import FakeClock, FakeScheduler, InMemorySettingsRepository


class MultiplierManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = InMemorySettingsRepository()
        self.scheduler = FakeScheduler()
        self.clock = FakeClock()
        self.announcements = []
        self.manager = MultiplierManager(
            self.settings,
            self.scheduler,
            announcer=lambda channel, text: self.announcements.append((channel, text)),
            clock=self.clock,
        )

    def test_missing_value_defaults_to_one_and_is_stored(self):
        self.assertEqual(self.manager.get_multiplier(), 1)
        self.assertEqual(self.settings.values[MULTIPLIER_KEY], "1")

    def test_invalid_stored_values_self_heal(self):
        for raw in ("0", "-3", "nan", "inf", "abc", ""):
            self.settings.values[MULTIPLIER_KEY] = raw
            self.assertEqual(self.manager.get_multiplier(), 1, raw)
            self.assertEqual(self.settings.values[MULTIPLIER_KEY], "1")

    def test_set_multiplier_floors_and_clamps(self):
        self.assertEqual(self.manager.set_multiplier(2.9), 2)
        self.assertEqual(self.manager.set_multiplier(0), 1)
        self.assertEqual(self.manager.set_multiplier(-4), 1)

    def test_set_without_duration_replaces_expiry_and_schedules_nothing(self):
        self.manager.set_multiplier(3, 10)
        self.manager.set_multiplier(4)
        self.assertEqual(self.settings.values[EXPIRES_AT_KEY], NEVER_EXPIRES)
        self.assertEqual(self.scheduler.pending, [])
        self.assertEqual(self.manager.get_multiplier(), 4)
        self.assertIsNone(self.manager.status().expires_at)

    def test_multiplier_without_duration_survives_restart(self):
        self.manager.set_multiplier(4)

        restarted_scheduler = FakeScheduler()
        restarted = MultiplierManager(self.settings, restarted_scheduler, clock=self.clock)
        self.clock.advance(24 * 60 * 60)
        restarted.get_multiplier()
        restarted.schedule_reversion_if_needed()

        self.assertEqual(restarted.get_multiplier(), 4)
        self.assertEqual(restarted_scheduler.pending, [])

    def test_reset_after_open_ended_multiplier_clears_marker(self):
        self.manager.set_multiplier(4)
        self.manager.reset_multiplier()
        self.assertEqual(self.settings.values[EXPIRES_AT_KEY], "0")
        self.manager.schedule_reversion_if_needed()
        self.assertEqual(self.manager.get_multiplier(), 1)

    def test_set_with_duration_then_expiry_in_the_past_reverts(self):
        self.manager.set_multiplier(3, 10)
        self.manager.schedule_reversion_if_needed()
        self.assertEqual(self.manager.get_multiplier(), 3)
        self.assertEqual(len(self.scheduler.pending), 1)
        self.assertAlmostEqual(self.scheduler.pending[0].delay, 600, delta=1)

        self.clock.advance(601)
        self.manager.schedule_reversion_if_needed()
        self.assertEqual(self.manager.get_multiplier(), 1)
        self.assertEqual(self.settings.values[EXPIRES_AT_KEY], "0")
        self.assertEqual(self.scheduler.pending, [])

    def test_schedule_without_expiry_forces_one(self):
        self.settings.values[MULTIPLIER_KEY] = "6"
        self.settings.values[EXPIRES_AT_KEY] = "0"

        self.manager.schedule_reversion_if_needed()

        self.assertEqual(self.manager.get_multiplier(), 1)
        self.assertEqual(self.scheduler.pending, [])

    def test_at_most_one_pending_reversion(self):
        self.manager.set_multiplier(2, 5)
        self.manager.set_multiplier(3, 10)
        self.manager.schedule_reversion_if_needed()
        self.assertEqual(len(self.scheduler.pending), 1)
        self.assertTrue(all(t.cancelled for t in self.scheduler.timers[:-1]))

    def test_timer_reverts_and_announces(self):
        self.manager.set_multiplier(5, 1, announce_channel_id="777")
        timer = self.scheduler.pending[0]

        self.clock.advance(60)
        timer.fire()

        self.assertEqual(self.manager.get_multiplier(), 1)
        self.assertEqual(self.settings.values[EXPIRES_AT_KEY], "0")
        self.assertEqual(self.announcements, [("777", EXPIRY_ANNOUNCEMENT)])
        self.assertFalse(self.manager.has_pending_reversion)

    def test_announcement_failure_is_swallowed(self):
        def broken(channel, text):
            raise RuntimeError("gateway down")

        self.manager.set_announcer(broken)
        self.manager.set_multiplier(5, 1, announce_channel_id="777")
        with self.assertLogs("application.multiplier", level="WARNING"):
            self.scheduler.pending[0].fire()
        self.assertEqual(self.manager.get_multiplier(), 1)

    def test_no_announcement_without_channel(self):
        self.manager.set_multiplier(5, 1)
        self.scheduler.pending[0].fire()
        self.assertEqual(self.announcements, [])
        self.assertNotIn(ANNOUNCE_CHANNEL_KEY, self.settings.values)

    def test_restart_rehydrates_pending_reversion(self):
        self.manager.set_multiplier(4, 30)

        restarted_scheduler = FakeScheduler()
        restarted = MultiplierManager(self.settings, restarted_scheduler, clock=self.clock)
        self.clock.advance(10 * 60)
        restarted.schedule_reversion_if_needed()

        self.assertEqual(restarted.get_multiplier(), 4)
        self.assertEqual(len(restarted_scheduler.pending), 1)
        self.assertAlmostEqual(restarted_scheduler.pending[0].delay, 20 * 60, delta=1)

    def test_reset_cancels_pending_reversion(self):
        self.manager.set_multiplier(4, 30)
        timer = self.scheduler.pending[0]

        self.manager.reset_multiplier()

        self.assertTrue(timer.cancelled)
        self.assertEqual(self.manager.get_multiplier(), 1)
        self.assertIsNone(self.manager.status().expires_at)

    def test_status_reports_expiry(self):
        self.manager.set_multiplier(2, 15)
        status = self.manager.status()
        self.assertEqual(status.value, 2)
        self.assertAlmostEqual(status.remaining(self.clock.now), 15 * 60, delta=1)


if __name__ == "__main__":
    unittest.main()
