from __future__ import annotations

import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from application.cooldowns import CooldownGuard
from application.scheduling import Scheduler
from application.services import BalanceService
from domain.models import RANKS, SUITS, BlackjackGame, BlackjackOutcome, Card, LedgerReason


logger = logging.getLogger(__name__)

GAME_KIND = "blackjack"
ACTIONS = ("hit", "stand", "double", "surrender")
DEALER_STANDS_ON = 17

PAYOUTS: Dict[BlackjackOutcome, Callable[[int], int]] = {
    BlackjackOutcome.WIN: lambda bet: bet * 2,
    BlackjackOutcome.BLACKJACK: lambda bet: (bet * 5) // 2,
    BlackjackOutcome.PUSH: lambda bet: bet,
    BlackjackOutcome.SURRENDER: lambda bet: bet // 2,
    BlackjackOutcome.BUST: lambda bet: 0,
    BlackjackOutcome.LOSE: lambda bet: 0,
}


def new_deck(rng: random.Random) -> List[Card]:
    """A freshly shuffled 52-card deck; index 0 is the top."""

    deck = [Card(rank, suit) for suit in SUITS for rank in RANKS]
    rng.shuffle(deck)
    return deck


def hand_value(cards: Sequence[Card]) -> int:
    total = 0
    aces = 0
    for card in cards:
        total += card.value
        if card.is_ace:
            aces += 1
    while total > 21 and aces > 0:
        total -= 10
        aces -= 1
    return total


def is_natural(cards: Sequence[Card]) -> bool:
    return len(cards) == 2 and hand_value(cards) == 21


@dataclass
class BlackjackResolution:
    """Everything the chat layer needs to render a finished hand."""

    user_id: str
    username: str
    outcome: BlackjackOutcome
    bet: int
    payout: int
    player: List[Card]
    dealer: List[Card]
    player_total: int
    dealer_total: int
    balance: int
    timed_out: bool = False

    @property
    def net(self) -> int:
        return self.payout - self.bet


@dataclass
class BlackjackStartResult:
    success: bool
    error_message: Optional[str] = None
    game: Optional[BlackjackGame] = None
    cooldown_remaining: float = 0.0
    balance: int = 0


@dataclass
class BlackjackActionResult:
    success: bool
    error_message: Optional[str] = None
    game: Optional[BlackjackGame] = None
    resolution: Optional[BlackjackResolution] = None

    @property
    def finished(self) -> bool:
        return self.resolution is not None


class BlackjackEngine:
    """
    Per-account blackjack state machine.

    Live games are held in `self._games` keyed by owner id. A game leaves
    the map exactly once, in `_claim`, and only the caller that removed it
    goes on to settle the hand; this is what keeps a player action and the
    auto-stand timeout from both paying out.
    """

    def __init__(
        self,
        balances: BalanceService,
        cooldowns: CooldownGuard,
        scheduler: Scheduler,
        rng: Optional[random.Random] = None,
        cooldown_seconds: float = 10.0,
        timeout_seconds: float = 30.0,
        deck_factory: Optional[Callable[[], List[Card]]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._balances = balances
        self._cooldowns = cooldowns
        self._scheduler = scheduler
        self._rng = rng or random.Random()
        self._cooldown_seconds = cooldown_seconds
        self._timeout_seconds = timeout_seconds
        self._deck_factory = deck_factory or (lambda: new_deck(self._rng))
        self._clock = clock
        self._games: Dict[str, BlackjackGame] = {}
        self._timeout_listener: Optional[Callable[[BlackjackResolution], Any]] = None

    def set_timeout_listener(self, listener: Optional[Callable[[BlackjackResolution], Any]]) -> None:
        """Called with the resolution whenever a hand is auto-stood."""

        self._timeout_listener = listener

    def get_game(self, user_id: str) -> Optional[BlackjackGame]:
        return self._games.get(user_id)

    def live_games(self) -> int:
        return len(self._games)

    def _draw(self, game: BlackjackGame) -> Card:
        if not game.deck:
            game.deck = self._deck_factory()
        return game.deck.pop(0)

    def start(self, user_id: str, username: str, bet: Optional[int]) -> BlackjackStartResult:
        if user_id in self._games:
            return BlackjackStartResult(
                success=False,
                error_message="You already have an active blackjack round.",
            )

        remaining = self._cooldowns.remaining((user_id, GAME_KIND), self._cooldown_seconds)
        if remaining > 0:
            return BlackjackStartResult(
                success=False,
                error_message=f"Cooldown {math.ceil(remaining)}s.",
                cooldown_remaining=remaining,
            )

        if bet is None or bet < 1:
            return BlackjackStartResult(success=False, error_message="Minimum bet is 1.")

        balance = self._balances.get_balance(user_id)
        if balance < bet:
            return BlackjackStartResult(
                success=False,
                error_message="Insufficient points.",
                balance=balance,
            )

        balance = self._balances.change_balance(
            user_id, username, -bet, LedgerReason.BLACKJACK_BET, {"bet": bet}
        )
        self._cooldowns.record((user_id, GAME_KIND))

        game = BlackjackGame(
            user_id=user_id,
            username=username,
            bet=bet,
            deck=self._deck_factory(),
            started_at=self._clock(),
        )
        game.player = [self._draw(game), self._draw(game)]
        game.dealer = [self._draw(game), self._draw(game)]
        self._games[user_id] = game

        self._scheduler.call_later(self._timeout_seconds, lambda: self._on_timeout(game))
        logger.info("Blackjack started for %s (%s), bet %d", username, user_id, bet)
        return BlackjackStartResult(success=True, game=game, balance=balance)

    def act(self, actor_id: str, owner_id: str, action: str) -> BlackjackActionResult:
        if actor_id != owner_id:
            return BlackjackActionResult(success=False, error_message="This is not your game.")

        game = self._games.get(owner_id)
        if game is None:
            return BlackjackActionResult(success=False, error_message="No active game found.")
        if game.ended:
            return BlackjackActionResult(success=False, error_message="Game already finished.")

        action = (action or "").strip().lower()
        if action == "hit":
            return self._hit(game)
        if action == "stand":
            return self._finish(game)
        if action == "double":
            return self._double(game)
        if action == "surrender":
            return self._finish(game, surrender=True)
        return BlackjackActionResult(success=False, error_message=f"Unknown action: {action}")

    def _hit(self, game: BlackjackGame) -> BlackjackActionResult:
        game.player.append(self._draw(game))
        if hand_value(game.player) >= 21:
            return self._finish(game)
        return BlackjackActionResult(success=True, game=game)

    def _double(self, game: BlackjackGame) -> BlackjackActionResult:
        if not game.can_double:
            return BlackjackActionResult(success=False, error_message="Cannot double now.", game=game)

        if self._balances.get_balance(game.user_id) < game.bet:
            return BlackjackActionResult(
                success=False,
                error_message="Not enough points to double.",
                game=game,
            )

        self._balances.change_balance(
            game.user_id,
            game.username,
            -game.bet,
            LedgerReason.BLACKJACK_DOUBLE_BET,
            {"bet": game.bet},
        )
        game.bet *= 2
        game.doubled = True
        game.player.append(self._draw(game))
        return self._finish(game)

    def _finish(self, game: BlackjackGame, surrender: bool = False) -> BlackjackActionResult:
        resolution = self._resolve(game, surrender=surrender)
        if resolution is None:
            return BlackjackActionResult(success=False, error_message="Game already finished.")
        return BlackjackActionResult(success=True, resolution=resolution)

    def _on_timeout(self, game: BlackjackGame) -> Any:
        resolution = self._resolve(game, timed_out=True)
        if resolution is None:
            return None
        logger.info("Blackjack for %s timed out, dealer stands", game.user_id)
        if self._timeout_listener is not None:
            return self._timeout_listener(resolution)
        return None

    def _claim(self, game: BlackjackGame) -> bool:
        # Check and remove with no suspension point in between.
        if self._games.get(game.user_id) is not game:
            return False
        del self._games[game.user_id]
        game.ended = True
        return True

    def _resolve(
        self,
        game: BlackjackGame,
        surrender: bool = False,
        timed_out: bool = False,
    ) -> Optional[BlackjackResolution]:
        if not self._claim(game):
            return None

        while hand_value(game.dealer) < DEALER_STANDS_ON:
            game.dealer.append(self._draw(game))

        player_total = hand_value(game.player)
        dealer_total = hand_value(game.dealer)
        outcome = self.outcome_for(game.player, player_total, dealer_total, surrender)
        payout = PAYOUTS[outcome](game.bet)

        # Credited before the table is redrawn; the resolution carries the
        # post-payout balance that the result embed shows.
        if payout > 0:
            balance = self._balances.change_balance(
                game.user_id,
                game.username,
                payout,
                LedgerReason.BLACKJACK_PAYOUT,
                {"outcome": outcome.value, "pv": player_total, "dv": dealer_total},
            )
        else:
            balance = self._balances.get_balance(game.user_id)

        logger.info(
            "Blackjack for %s resolved: %s (player %d, dealer %d, bet %d, payout %d)",
            game.user_id,
            outcome.value,
            player_total,
            dealer_total,
            game.bet,
            payout,
        )
        return BlackjackResolution(
            user_id=game.user_id,
            username=game.username,
            outcome=outcome,
            bet=game.bet,
            payout=payout,
            player=list(game.player),
            dealer=list(game.dealer),
            player_total=player_total,
            dealer_total=dealer_total,
            balance=balance,
            timed_out=timed_out,
        )

    @staticmethod
    def outcome_for(
        player: Sequence[Card],
        player_total: int,
        dealer_total: int,
        surrender: bool = False,
    ) -> BlackjackOutcome:
        if is_natural(player):
            return BlackjackOutcome.BLACKJACK
        if surrender:
            return BlackjackOutcome.SURRENDER
        if player_total > 21:
            return BlackjackOutcome.BUST
        if dealer_total > 21:
            return BlackjackOutcome.WIN
        if player_total > dealer_total:
            return BlackjackOutcome.WIN
        if player_total == dealer_total:
            return BlackjackOutcome.PUSH
        return BlackjackOutcome.LOSE
