from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from domain.models import LeaderboardRow, LedgerEntry, LedgerReason
from domain.repositories import LedgerRepository

if TYPE_CHECKING:
    from application.multiplier import MultiplierManager


logger = logging.getLogger(__name__)


@dataclass
class ExternalContext:
    """
    Information about the caller as seen by the chat platform.

    The application layer never depends on concrete SDK types; it only sees
    this small context object.
    """

    user_id: str
    display_name: str
    is_admin: bool = False


@dataclass
class OperationResult:
    """Generic result type for simple operations."""

    success: bool
    error_message: Optional[str] = None


@dataclass
class VouchAward:
    """Points credited for one qualifying vouch message."""

    awarded: int
    total: int
    multiplier: int


@dataclass
class AdminAdjustResult:
    success: bool
    error_message: Optional[str] = None
    new_balance: int = 0
    created: bool = False


@dataclass
class RecountResult:
    success: bool
    error_message: Optional[str] = None
    accounts: int = 0
    vouches: int = 0
    top: List[Tuple[str, int]] = field(default_factory=list)


def _validate_positive_amount(amount: int) -> Optional[str]:
    if amount <= 0:
        return "Amount must be greater than zero."
    return None


class BalanceService:
    """
    Sole writer of account balances.

    Every mutation is delegated to `LedgerRepository.apply_delta`, which
    performs the read, the clamp at zero, the upsert and the ledger append
    as one atomic unit against the store.
    """

    def __init__(self, ledger_repo: LedgerRepository) -> None:
        self._repo = ledger_repo

    def get_balance(self, user_id: str) -> int:
        account = self._repo.get_account(user_id)
        if account is None:
            return 0
        return account.balance

    def change_balance(
        self,
        user_id: str,
        username: Optional[str],
        delta: int,
        reason: LedgerReason,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        new_balance, _created = self._apply(user_id, username, delta, reason, metadata)
        return new_balance

    def _apply(
        self,
        user_id: str,
        username: Optional[str],
        delta: int,
        reason: LedgerReason,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, bool]:
        new_balance, created = self._repo.apply_delta(
            user_id,
            username,
            int(delta),
            LedgerReason(reason),
            metadata,
        )
        logger.debug(
            "Balance change user=%s delta=%+d reason=%s -> %d",
            user_id,
            delta,
            LedgerReason(reason).value,
            new_balance,
        )
        return new_balance, created

    def admin_adjust(
        self,
        user_id: str,
        username: Optional[str],
        amount: int,
        add: bool,
    ) -> Tuple[int, bool]:
        delta = amount if add else -amount
        return self._apply(
            user_id,
            username,
            delta,
            LedgerReason.ADMIN_ADJUST,
            {"amount": amount, "direction": "add" if add else "remove"},
        )

    def entries(self, user_id: str) -> List[LedgerEntry]:
        return self._repo.get_entries(user_id)

    def wipe_balances(self) -> int:
        removed = self._repo.delete_all_accounts()
        logger.warning("Wiped %d account balance(s)", removed)
        return removed

    def rebuild_balances(self, counts: Mapping[str, Tuple[int, Optional[str]]]) -> None:
        self._repo.replace_all_accounts(counts)
        logger.info("Rebuilt balances for %d account(s)", len(counts))

    def balance_leaderboard(self, limit: int = 10) -> List[LeaderboardRow]:
        return self._repo.top_balances(limit)

    def casino_leaderboard(self, limit: int = 10) -> List[LeaderboardRow]:
        return self._repo.top_net_by_reasons(LedgerReason.casino_reasons(), limit)

    def backfill_username(self, user_id: str, username: str) -> None:
        self._repo.set_username(user_id, username)


def award_vouch(
    external_ctx: ExternalContext,
    balances: BalanceService,
    multiplier: "MultiplierManager",
) -> VouchAward:
    """
    Credit the author of a qualifying vouch message.

    Qualification (channel, image, provider mention) has already been
    decided by the interface layer.
    """

    current = multiplier.get_multiplier()
    points = max(1, math.floor(current))
    total = balances.change_balance(
        external_ctx.user_id,
        external_ctx.display_name,
        points,
        LedgerReason.AWARD,
        {"multiplier": current},
    )
    logger.info(
        "Awarded %d vouch point(s) to %s (%s), total %d",
        points,
        external_ctx.display_name,
        external_ctx.user_id,
        total,
    )
    return VouchAward(awarded=points, total=total, multiplier=current)


def adjust_points(
    external_ctx: ExternalContext,
    target_user_id: str,
    target_username: str,
    amount: Optional[int],
    add: bool,
    balances: BalanceService,
) -> AdminAdjustResult:
    """
    Handle the admin `addpoints` / `removepoints` commands.

    - The amount must be a positive whole number.
    - Removing more than the balance clamps at zero instead of failing.
    - Unknown accounts are created with the clamped result.
    """

    if not external_ctx.is_admin:
        return AdminAdjustResult(
            success=False,
            error_message="You do not have permission to use this command.",
        )

    amount = math.floor(amount or 0)
    error = _validate_positive_amount(amount)
    if error:
        return AdminAdjustResult(success=False, error_message=error)

    new_balance, created = balances.admin_adjust(target_user_id, target_username, amount, add)
    logger.info(
        "%s %s %d point(s) %s %s -> %d",
        external_ctx.display_name,
        "added" if add else "removed",
        amount,
        "to" if add else "from",
        target_user_id,
        new_balance,
    )
    return AdminAdjustResult(success=True, new_balance=new_balance, created=created)


def wipe_vouches(
    external_ctx: ExternalContext,
    confirm: str,
    balances: BalanceService,
) -> OperationResult:
    if not external_ctx.is_admin:
        return OperationResult(
            success=False,
            error_message="You do not have permission to use this command.",
        )

    if (confirm or "").strip().lower() != "yes":
        return OperationResult(
            success=False,
            error_message="Type /wipevouches confirm:yes to wipe all vouch points (irreversible).",
        )

    balances.wipe_balances()
    return OperationResult(success=True)


def recount_vouches(
    external_ctx: ExternalContext,
    vouch_counts: Mapping[str, Tuple[int, Optional[str]]],
    balances: BalanceService,
) -> RecountResult:
    """
    Replace every balance with a count of historical vouches.

    Each valid historical post is worth exactly one point; the current
    multiplier is not applied.
    """

    if not external_ctx.is_admin:
        return RecountResult(
            success=False,
            error_message="You do not have permission to use this command.",
        )

    counts = {
        user_id: (count, username)
        for user_id, (count, username) in vouch_counts.items()
        if count > 0
    }
    balances.rebuild_balances(counts)

    ranked = sorted(counts.items(), key=lambda item: item[1][0], reverse=True)
    return RecountResult(
        success=True,
        accounts=len(counts),
        vouches=sum(count for count, _ in counts.values()),
        top=[(user_id, count) for user_id, (count, _) in ranked[:10]],
    )
