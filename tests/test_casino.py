import random
import unittest

from application.casino import CasinoService, roulette_color, roulette_payout, slots_payout
from application.cooldowns import CooldownGuard
from application.services import BalanceService
from domain.models import LedgerReason
from fakes import FakeClock, InMemoryLedgerRepository, ScriptedRandom


class RoulettePayoutTests(unittest.TestCase):
    def test_colors(self):
        self.assertEqual(roulette_color(0), "green")
        self.assertEqual(roulette_color(17), "black")
        self.assertEqual(roulette_color(32), "red")

    def test_straight_number_pays_thirty_five(self):
        self.assertEqual(roulette_payout(17, "number", 10, 17), 350)
        self.assertEqual(roulette_payout(17, "number", 10, 18), 0)
        self.assertEqual(roulette_payout(0, "number", 10, 0), 350)

    def test_outside_bets(self):
        self.assertEqual(roulette_payout(17, "red", 10), 0)
        self.assertEqual(roulette_payout(17, "black", 10), 20)
        self.assertEqual(roulette_payout(18, "even", 10), 20)
        self.assertEqual(roulette_payout(18, "odd", 10), 0)
        self.assertEqual(roulette_payout(18, "low", 10), 20)
        self.assertEqual(roulette_payout(19, "high", 10), 20)

    def test_zero_loses_outside_bets(self):
        for bet_type in ("red", "black", "even", "odd", "low", "high"):
            with self.subTest(bet_type=bet_type):
                self.assertEqual(roulette_payout(0, bet_type, 10), 0)


class SlotsPayoutTests(unittest.TestCase):
    def test_triple_pair_and_miss(self):
        self.assertEqual(slots_payout(["💎", "💎", "💎"], 10), 100)
        self.assertEqual(slots_payout(["💎", "💎", "🍒"], 10), 20)
        self.assertEqual(slots_payout(["💎", "🍒", "💎"], 10), 20)
        self.assertEqual(slots_payout(["💎", "🍋", "🍒"], 10), 0)


class CasinoServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.balances = BalanceService(InMemoryLedgerRepository())
        self.clock = FakeClock()
        self.cooldowns = CooldownGuard(clock=self.clock)
        self.balances.change_balance("p", "player", 100, LedgerReason.AWARD)

    def casino(self, rng: ScriptedRandom) -> CasinoService:
        return CasinoService(
            self.balances,
            self.cooldowns,
            rng=rng,
            roulette_cooldown=10,
            slots_cooldown=5,
        )

    def test_number_bet_hit(self):
        casino = self.casino(ScriptedRandom(ints=[17]))

        result = casino.play_roulette("p", "player", "number", 10, 17)

        self.assertTrue(result.success)
        self.assertEqual(result.result, 17)
        self.assertEqual(result.color, "black")
        self.assertEqual(result.payout, 350)
        self.assertEqual(result.net, 340)
        self.assertEqual(self.balances.get_balance("p"), 440)
        reasons = [e.reason for e in self.balances.entries("p")]
        self.assertEqual(
            reasons,
            [LedgerReason.AWARD, LedgerReason.ROULETTE_BET, LedgerReason.ROULETTE_PAYOUT],
        )

    def test_red_bet_on_black_loses(self):
        casino = self.casino(ScriptedRandom(ints=[17]))

        result = casino.play_roulette("p", "player", "Red", 10)

        self.assertTrue(result.success)
        self.assertEqual(result.payout, 0)
        self.assertEqual(self.balances.get_balance("p"), 90)
        # A loss writes no payout entry.
        self.assertEqual(self.balances.entries("p")[-1].reason, LedgerReason.ROULETTE_BET)

    def test_invalid_bets_change_nothing(self):
        casino = self.casino(ScriptedRandom())
        cases = [
            ("purple", 10, None),
            ("number", 10, None),
            ("number", 10, 37),
            ("number", 10, -1),
            ("red", 0, None),
            ("red", 500, None),
        ]
        for bet_type, amount, number in cases:
            with self.subTest(bet_type=bet_type, amount=amount, number=number):
                result = casino.play_roulette("p", "player", bet_type, amount, number)
                self.assertFalse(result.success)
                self.assertTrue(result.error_message)
                self.assertEqual(self.balances.get_balance("p"), 100)
                self.assertEqual(len(self.balances.entries("p")), 1)

    def test_roulette_cooldown_blocks_second_spin(self):
        casino = self.casino(ScriptedRandom(ints=[5, 5]))
        casino.play_roulette("p", "player", "odd", 10)
        balance = self.balances.get_balance("p")
        entries = len(self.balances.entries("p"))

        self.clock.advance(3)
        blocked = casino.play_roulette("p", "player", "odd", 10)

        self.assertFalse(blocked.success)
        self.assertEqual(blocked.error_message, "Cooldown 7s.")
        self.assertEqual(self.balances.get_balance("p"), balance)
        self.assertEqual(len(self.balances.entries("p")), entries)

        self.clock.advance(7)
        self.assertTrue(casino.play_roulette("p", "player", "odd", 10).success)

    def test_slots_triple(self):
        casino = self.casino(ScriptedRandom(choices=["💎", "💎", "💎"]))

        result = casino.play_slots("p", "player", 10)

        self.assertEqual(result.reels, ["💎", "💎", "💎"])
        self.assertEqual(result.payout, 100)
        self.assertEqual(self.balances.get_balance("p"), 190)

    def test_slots_pair_and_miss(self):
        casino = self.casino(ScriptedRandom(choices=["💎", "💎", "🍒", "💎", "🍋", "🍒"]))

        pair = casino.play_slots("p", "player", 10)
        self.clock.advance(5)
        miss = casino.play_slots("p", "player", 10)

        self.assertEqual(pair.payout, 20)
        self.assertEqual(miss.payout, 0)
        self.assertEqual(miss.net, -10)
        self.assertEqual(self.balances.get_balance("p"), 100)

    def test_slots_cooldown_is_separate_from_roulette(self):
        casino = self.casino(ScriptedRandom(ints=[5], choices=["🍒", "🍋", "💎"]))
        casino.play_roulette("p", "player", "odd", 10)

        self.assertTrue(casino.play_slots("p", "player", 10).success)
        blocked = casino.play_slots("p", "player", 10)
        self.assertFalse(blocked.success)
        self.assertGreater(blocked.cooldown_remaining, 0)

    def test_slots_insufficient_balance(self):
        casino = self.casino(ScriptedRandom())
        result = casino.play_slots("p", "player", 101)
        self.assertFalse(result.success)
        self.assertEqual(result.error_message, "Insufficient points.")
        self.assertEqual(result.balance, 100)

    def test_reels_use_real_weighted_draw(self):
        casino = self.casino(random.Random(7))
        for _ in range(20):
            reels = casino.spin_reels()
            self.assertEqual(len(reels), 3)
            self.assertTrue(set(reels) <= {"🍒", "🍋", "💎", "🔔", "7️⃣", "🃏"})


class CooldownGuardTests(unittest.TestCase):
    def test_remaining_and_record(self):
        clock = FakeClock()
        guard = CooldownGuard(clock=clock)
        key = ("u", "slots")

        self.assertEqual(guard.remaining(key, 5), 0)
        guard.record(key)
        self.assertEqual(guard.remaining(key, 5), 5)
        clock.advance(2)
        self.assertEqual(guard.remaining(key, 5), 3)
        self.assertEqual(guard.remaining(("u", "roulette"), 5), 0)
        clock.advance(10)
        self.assertEqual(guard.remaining(key, 5), 0)

    def test_clear(self):
        guard = CooldownGuard(clock=FakeClock())
        guard.record(("u", "slots"))
        guard.clear()
        self.assertEqual(guard.remaining(("u", "slots"), 5), 0)


if __name__ == "__main__":
    unittest.main()
