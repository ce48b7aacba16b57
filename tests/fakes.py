from __future__ import annotations

import random
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from domain.models import Account, Card, LeaderboardRow, LedgerEntry, LedgerReason
from domain.repositories import LedgerRepository, SettingsRepository, StorageError


class InMemoryLedgerRepository(LedgerRepository):
    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.ledger: List[LedgerEntry] = []
        self.fail_next = False

    def get_account(self, user_id: str):
        return self.accounts.get(user_id)

    def apply_delta(self, user_id, username, delta, reason, metadata=None):
        if self.fail_next:
            self.fail_next = False
            raise StorageError("disk on fire")

        account = self.accounts.get(user_id)
        created = account is None
        if account is None:
            account = Account(id=user_id, username=username, balance=0)
            self.accounts[user_id] = account
        account.balance = max(0, account.balance + delta)
        if username:
            account.username = username
        account.last_updated = datetime.now()
        self.ledger.append(
            LedgerEntry(
                id=len(self.ledger) + 1,
                user_id=user_id,
                delta=delta,
                reason=LedgerReason(reason),
                metadata=metadata,
                created_at=datetime.now(),
            )
        )
        return account.balance, created

    def get_entries(self, user_id: str):
        return [e for e in self.ledger if e.user_id == user_id]

    def top_balances(self, limit: int):
        ranked = sorted(self.accounts.values(), key=lambda a: a.balance, reverse=True)
        return [LeaderboardRow(a.id, a.username, a.balance) for a in ranked[:limit]]

    def top_net_by_reasons(self, reasons, limit):
        wanted = {LedgerReason(r) for r in reasons}
        net: Dict[str, int] = {}
        for entry in self.ledger:
            if entry.reason in wanted:
                net[entry.user_id] = net.get(entry.user_id, 0) + entry.delta
        ranked = sorted(net.items(), key=lambda item: item[1], reverse=True)
        return [
            LeaderboardRow(
                user_id,
                self.accounts[user_id].username if user_id in self.accounts else None,
                value,
            )
            for user_id, value in ranked[:limit]
        ]

    def set_username(self, user_id: str, username: str) -> None:
        if user_id in self.accounts:
            self.accounts[user_id].username = username

    def delete_all_accounts(self) -> int:
        removed = len(self.accounts)
        self.accounts.clear()
        return removed

    def replace_all_accounts(self, counts: Mapping[str, Tuple[int, Optional[str]]]) -> None:
        self.accounts = {
            user_id: Account(id=user_id, username=username, balance=max(0, points))
            for user_id, (points, username) in counts.items()
        }
        for user_id, (points, _) in counts.items():
            self.ledger.append(
                LedgerEntry(
                    id=len(self.ledger) + 1,
                    user_id=user_id,
                    delta=points,
                    reason=LedgerReason.RECOUNT,
                    metadata={"vouches": points},
                )
            )


class InMemorySettingsRepository(SettingsRepository):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.values: Dict[str, str] = dict(initial or {})

    def get_setting(self, key: str, default: Optional[str] = None):
        return self.values.get(key, default)

    def set_setting(self, key: str, value: str) -> None:
        self.values[key] = str(value)


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], Any]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> Any:
        return self.callback()


class FakeScheduler:
    """Collects timers instead of running them; tests fire them by hand."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], Any]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedRandom(random.Random):
    """A `random.Random` whose draws are taken from queues set up by the test."""

    def __init__(self, ints: Iterable[int] = (), choices: Iterable[Any] = ()):
        super().__init__(0)
        self._ints = list(ints)
        self._choices = list(choices)

    def randint(self, a: int, b: int) -> int:
        value = self._ints.pop(0)
        assert a <= value <= b
        return value

    def choices(self, population, weights=None, *, cum_weights=None, k=1):
        value = self._choices.pop(0)
        assert value in population
        return [value]


def cards(*ranks: str) -> List[Card]:
    return [Card(rank) for rank in ranks]


def deck_of(*ranks: str) -> Callable[[], List[Card]]:
    """Deck factory dealing `ranks` in order (player, player, dealer, dealer, ...)."""

    return lambda: cards(*ranks)
