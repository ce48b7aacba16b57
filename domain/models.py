from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class Account:
    """
    Domain representation of a point holder.

    `username` is the last display name we saw for the account and is
    advisory only; the platform `id` is the identity.
    """

    id: str
    username: Optional[str]
    balance: int
    last_updated: Optional[datetime] = None


class LedgerReason(str, Enum):
    """Closed set of reasons a balance may change."""

    AWARD = "award"
    ADMIN_ADJUST = "admin_adjust"
    RECOUNT = "recount"
    BLACKJACK_BET = "blackjack_bet"
    BLACKJACK_DOUBLE_BET = "blackjack_double_bet"
    BLACKJACK_PAYOUT = "blackjack_payout"
    ROULETTE_BET = "roulette_bet"
    ROULETTE_PAYOUT = "roulette_payout"
    SLOTS_BET = "slots_bet"
    SLOTS_PAYOUT = "slots_payout"

    @property
    def game(self) -> Optional[str]:
        prefix = self.value.split("_", 1)[0]
        if prefix in CASINO_GAMES:
            return prefix
        return None

    @property
    def is_casino(self) -> bool:
        return self.game is not None

    @classmethod
    def casino_reasons(cls) -> List["LedgerReason"]:
        return [reason for reason in cls if reason.is_casino]


CASINO_GAMES = ("blackjack", "roulette", "slots")


@dataclass
class LedgerEntry:
    """
    Immutable audit record of one requested balance delta.

    The delta is what the caller asked for, not the clamped change that
    was actually applied to the balance.
    """

    id: int
    user_id: str
    delta: int
    reason: LedgerReason
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


@dataclass
class LeaderboardRow:
    user_id: str
    username: Optional[str]
    value: int


SUITS = ("♠", "♥", "♦", "♣")
RANKS = ("A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K")


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str = "♠"

    @property
    def value(self) -> int:
        if self.rank == "A":
            return 11
        if self.rank in ("K", "Q", "J", "10"):
            return 10
        return int(self.rank)

    @property
    def is_ace(self) -> bool:
        return self.rank == "A"

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"


class BlackjackOutcome(str, Enum):
    WIN = "win"
    BLACKJACK = "blackjack"
    PUSH = "push"
    SURRENDER = "surrender"
    BUST = "bust"
    LOSE = "lose"


@dataclass
class BlackjackGame:
    """
    A live blackjack hand. Lives only in memory, keyed by the owner's id.

    `bet` has already been debited from the owner's balance.
    """

    user_id: str
    username: str
    bet: int
    deck: List[Card]
    player: List[Card] = field(default_factory=list)
    dealer: List[Card] = field(default_factory=list)
    started_at: float = 0.0
    ended: bool = False
    doubled: bool = False

    @property
    def can_double(self) -> bool:
        return not self.ended and not self.doubled and len(self.player) == 2
