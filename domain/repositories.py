from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from .models import Account, LeaderboardRow, LedgerEntry, LedgerReason


class StorageError(Exception):
    """Raised when the underlying store fails; the unit of work was rolled back."""


class LedgerRepository(Protocol):
    """
    Abstraction over account balances and the append-only ledger.

    Implementations are responsible for:
    - Mapping between database rows and the `Account` / `LedgerEntry` models.
    - Running every balance mutation as one atomic unit against the store.
    - Wrapping driver errors in `StorageError`.
    """

    def get_account(self, user_id: str) -> Optional[Account]:
        """Return the account with the given ID, or None if not found."""

        ...

    def apply_delta(
        self,
        user_id: str,
        username: Optional[str],
        delta: int,
        reason: LedgerReason,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, bool]:
        """
        Atomically read, clamp at zero, upsert and log one balance change.

        Returns `(new_balance, created)` where `created` is True when the
        account row did not exist before this call.
        """

        ...

    def get_entries(self, user_id: str) -> List[LedgerEntry]:
        """Return the ledger entries of one account, oldest first."""

        ...

    def top_balances(self, limit: int) -> List[LeaderboardRow]:
        ...

    def top_net_by_reasons(
        self,
        reasons: Sequence[LedgerReason],
        limit: int,
    ) -> List[LeaderboardRow]:
        """Sum ledger deltas per account over `reasons`, highest first."""

        ...

    def set_username(self, user_id: str, username: str) -> None:
        ...

    def delete_all_accounts(self) -> int:
        """Remove every account row; ledger history is kept."""

        ...

    def replace_all_accounts(self, counts: Mapping[str, Tuple[int, Optional[str]]]) -> None:
        """
        Replace every account row with `counts` (user_id -> (points, username))
        in one transaction, logging a recount entry per account.
        """

        ...


class SettingsRepository(Protocol):
    """Process-wide durable key/value settings."""

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        ...

    def set_setting(self, key: str, value: str) -> None:
        ...
