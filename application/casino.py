from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from application.cooldowns import CooldownGuard
from application.services import BalanceService
from domain.models import LedgerReason


logger = logging.getLogger(__name__)

RED_NUMBERS = frozenset({1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36})
ROULETTE_BET_TYPES = ("red", "black", "even", "odd", "low", "high", "number")
# Physical wheel order, used by the chat layer for the spinning animation.
ROULETTE_WHEEL = (
    0, 32, 15, 19, 4, 21, 2, 25, 17, 34, 6, 27, 13, 36, 11, 30, 8, 23, 10,
    5, 24, 16, 33, 1, 20, 14, 31, 9, 22, 18, 29, 7, 28, 12, 35, 3, 26,
)

# Weighted symbols, rarest last. Weights sum to 100.
SLOT_SYMBOLS: Tuple[Tuple[str, int], ...] = (
    ("🍒", 30),
    ("🍋", 25),
    ("💎", 15),
    ("🔔", 15),
    ("7️⃣", 10),
    ("🃏", 5),
)
SLOTS_TRIPLE_MULTIPLIER = 10
SLOTS_PAIR_MULTIPLIER = 2


def roulette_color(number: int) -> str:
    if number == 0:
        return "green"
    return "red" if number in RED_NUMBERS else "black"


def roulette_payout(result: int, bet_type: str, amount: int, number: Optional[int] = None) -> int:
    """Total returned to the player for one spin (0 on a loss)."""

    if bet_type in ("red", "black"):
        return amount * 2 if roulette_color(result) == bet_type else 0
    if result == 0:
        # Zero loses every outside bet.
        return amount * 35 if bet_type == "number" and number == 0 else 0
    if bet_type in ("even", "odd"):
        return amount * 2 if (result % 2 == 0) == (bet_type == "even") else 0
    if bet_type == "low":
        return amount * 2 if result <= 18 else 0
    if bet_type == "high":
        return amount * 2 if result >= 19 else 0
    if bet_type == "number":
        return amount * 35 if number == result else 0
    return 0


def slots_payout(reels: Sequence[str], amount: int) -> int:
    a, b, c = reels
    if a == b == c:
        return amount * SLOTS_TRIPLE_MULTIPLIER
    if a == b or b == c or a == c:
        return amount * SLOTS_PAIR_MULTIPLIER
    return 0


@dataclass
class WagerResult:
    """
    Outcome of one single-shot wager.

    `payout` is the total credited back (0 on a loss); `net` is what the
    player won or lost overall.
    """

    success: bool
    error_message: Optional[str] = None
    game: str = ""
    bet: int = 0
    payout: int = 0
    balance: int = 0
    cooldown_remaining: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def net(self) -> int:
        return self.payout - self.bet


@dataclass
class RouletteResult(WagerResult):
    result: int = 0
    color: str = ""
    bet_type: str = ""
    number: Optional[int] = None


@dataclass
class SlotsResult(WagerResult):
    reels: List[str] = field(default_factory=list)


class CasinoService:
    """
    Stateless roulette and slots resolvers sharing one cooldown guard.

    Both follow the same shape: validate, debit the bet, draw, credit any
    payout. Validation failures change nothing.
    """

    def __init__(
        self,
        balances: BalanceService,
        cooldowns: CooldownGuard,
        rng: Optional[random.Random] = None,
        roulette_cooldown: float = 10.0,
        slots_cooldown: float = 5.0,
    ) -> None:
        self._balances = balances
        self._cooldowns = cooldowns
        self._rng = rng or random.Random()
        self._roulette_cooldown = roulette_cooldown
        self._slots_cooldown = slots_cooldown

    def _check_wager(
        self,
        user_id: str,
        game: str,
        window: float,
        amount: Optional[int],
    ) -> Optional[WagerResult]:
        remaining = self._cooldowns.remaining((user_id, game), window)
        if remaining > 0:
            return WagerResult(
                success=False,
                error_message=f"Cooldown {math.ceil(remaining)}s.",
                game=game,
                cooldown_remaining=remaining,
            )

        if amount is None or amount < 1:
            return WagerResult(success=False, error_message="Minimum bet is 1.", game=game)

        balance = self._balances.get_balance(user_id)
        if balance < amount:
            return WagerResult(
                success=False,
                error_message="Insufficient points.",
                game=game,
                balance=balance,
            )
        return None

    def play_roulette(
        self,
        user_id: str,
        username: str,
        bet_type: str,
        amount: Optional[int],
        number: Optional[int] = None,
    ) -> RouletteResult:
        bet_type = (bet_type or "").strip().lower()
        rejection = self._check_wager(user_id, "roulette", self._roulette_cooldown, amount)
        if rejection is not None:
            return RouletteResult(**vars(rejection), bet_type=bet_type, number=number)

        if bet_type not in ROULETTE_BET_TYPES:
            return RouletteResult(
                success=False,
                error_message="Bet type must be one of: " + ", ".join(ROULETTE_BET_TYPES) + ".",
                game="roulette",
                bet_type=bet_type,
            )
        if bet_type == "number" and (number is None or not 0 <= number <= 36):
            return RouletteResult(
                success=False,
                error_message="Pick a number between 0 and 36 for a number bet.",
                game="roulette",
                bet_type=bet_type,
                number=number,
            )

        self._balances.change_balance(
            user_id,
            username,
            -amount,
            LedgerReason.ROULETTE_BET,
            {"bet": amount, "betType": bet_type, "number": number},
        )
        self._cooldowns.record((user_id, "roulette"))

        result = self._rng.randint(0, 36)
        payout = roulette_payout(result, bet_type, amount, number)
        balance = self._settle(
            user_id, username, payout, LedgerReason.ROULETTE_PAYOUT, {"result": result}
        )

        logger.info(
            "Roulette %s: %s bet %d on %s%s, result %d, payout %d",
            user_id,
            username,
            amount,
            bet_type,
            f" {number}" if bet_type == "number" else "",
            result,
            payout,
        )
        return RouletteResult(
            success=True,
            game="roulette",
            bet=amount,
            payout=payout,
            balance=balance,
            result=result,
            color=roulette_color(result),
            bet_type=bet_type,
            number=number,
        )

    def spin_reels(self) -> List[str]:
        symbols = [symbol for symbol, _ in SLOT_SYMBOLS]
        weights = [weight for _, weight in SLOT_SYMBOLS]
        return [self._rng.choices(symbols, weights=weights)[0] for _ in range(3)]

    def play_slots(self, user_id: str, username: str, amount: Optional[int]) -> SlotsResult:
        rejection = self._check_wager(user_id, "slots", self._slots_cooldown, amount)
        if rejection is not None:
            return SlotsResult(**vars(rejection))

        self._balances.change_balance(
            user_id, username, -amount, LedgerReason.SLOTS_BET, {"bet": amount}
        )
        self._cooldowns.record((user_id, "slots"))

        reels = self.spin_reels()
        payout = slots_payout(reels, amount)
        balance = self._settle(
            user_id,
            username,
            payout,
            LedgerReason.SLOTS_PAYOUT,
            {"a": reels[0], "b": reels[1], "c": reels[2]},
        )

        logger.info("Slots %s: bet %d, reels %s, payout %d", user_id, amount, " ".join(reels), payout)
        return SlotsResult(
            success=True,
            game="slots",
            bet=amount,
            payout=payout,
            balance=balance,
            reels=reels,
        )

    def _settle(
        self,
        user_id: str,
        username: str,
        payout: int,
        reason: LedgerReason,
        metadata: Dict[str, Any],
    ) -> int:
        if payout > 0:
            return self._balances.change_balance(user_id, username, payout, reason, metadata)
        return self._balances.get_balance(user_id)
