from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import psycopg2

from domain.models import Account, LeaderboardRow, LedgerEntry, LedgerReason
from domain.repositories import LedgerRepository, StorageError


class PostgresLedgerRepository(LedgerRepository):
    """
    Postgres-backed implementation of `LedgerRepository`.

    Uses the same `vouch_points` / `ledger` layout as the SQLite backend.
    Balance mutations lock the account row with `SELECT ... FOR UPDATE`
    for the duration of the transaction.
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._ensure_tables()

    def _get_connection(self):
        return psycopg2.connect(self._dsn)

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        try:
            conn = self._get_connection()
        except psycopg2.Error as exc:
            raise StorageError(f"Could not connect to Postgres: {exc}") from exc

        try:
            # `with conn` commits on success and rolls back on error.
            with conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg2.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS vouch_points (
                    user_id TEXT PRIMARY KEY,
                    points INTEGER NOT NULL DEFAULT 0,
                    username TEXT,
                    last_updated TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger (
                    id BIGSERIAL PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    delta INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    meta JSONB,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_ledger_user ON ledger(user_id)")

    @staticmethod
    def _to_domain(row: tuple) -> Account:
        return Account(
            id=str(row[0]),
            balance=int(row[1]),
            username=row[2],
            last_updated=row[3],
        )

    @staticmethod
    def _entry_to_domain(row: tuple) -> LedgerEntry:
        meta = row[4]
        if isinstance(meta, str):
            meta = json.loads(meta)
        return LedgerEntry(
            id=int(row[0]),
            user_id=str(row[1]),
            delta=int(row[2]),
            reason=LedgerReason(row[3]),
            metadata=meta,
            created_at=row[5],
        )

    def get_account(self, user_id: str) -> Optional[Account]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT user_id, points, username, last_updated FROM vouch_points WHERE user_id = %s",
                (user_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def apply_delta(
        self,
        user_id: str,
        username: Optional[str],
        delta: int,
        reason: LedgerReason,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, bool]:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO vouch_points (user_id, points, username)
                VALUES (%s, 0, %s)
                ON CONFLICT (user_id) DO NOTHING
                """,
                (user_id, username),
            )
            created = cur.rowcount == 1

            cur.execute(
                "SELECT points FROM vouch_points WHERE user_id = %s FOR UPDATE",
                (user_id,),
            )
            current = int(cur.fetchone()[0])
            new_balance = max(0, current + delta)

            cur.execute(
                """
                UPDATE vouch_points
                SET points = %s, username = COALESCE(%s, username), last_updated = NOW()
                WHERE user_id = %s
                """,
                (new_balance, username, user_id),
            )
            cur.execute(
                "INSERT INTO ledger (user_id, delta, reason, meta) VALUES (%s, %s, %s, %s)",
                (
                    user_id,
                    delta,
                    LedgerReason(reason).value,
                    json.dumps(metadata) if metadata else None,
                ),
            )
            return new_balance, created

    def get_entries(self, user_id: str) -> List[LedgerEntry]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id, user_id, delta, reason, meta, created_at
                FROM ledger
                WHERE user_id = %s
                ORDER BY id
                """,
                (user_id,),
            )
            return [self._entry_to_domain(row) for row in cur.fetchall()]

    def top_balances(self, limit: int) -> List[LeaderboardRow]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT user_id, username, points FROM vouch_points ORDER BY points DESC LIMIT %s",
                (limit,),
            )
            return [
                LeaderboardRow(user_id=str(row[0]), username=row[1], value=int(row[2]))
                for row in cur.fetchall()
            ]

    def top_net_by_reasons(
        self,
        reasons: Sequence[LedgerReason],
        limit: int,
    ) -> List[LeaderboardRow]:
        if not reasons:
            return []
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT l.user_id, MAX(v.username), SUM(l.delta) AS net
                FROM ledger l
                LEFT JOIN vouch_points v ON v.user_id = l.user_id
                WHERE l.reason = ANY(%s)
                GROUP BY l.user_id
                ORDER BY net DESC
                LIMIT %s
                """,
                ([LedgerReason(r).value for r in reasons], limit),
            )
            return [
                LeaderboardRow(user_id=str(row[0]), username=row[1], value=int(row[2]))
                for row in cur.fetchall()
            ]

    def set_username(self, user_id: str, username: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE vouch_points SET username = %s WHERE user_id = %s",
                (username, user_id),
            )

    def delete_all_accounts(self) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM vouch_points")
            return cur.rowcount

    def replace_all_accounts(self, counts: Mapping[str, Tuple[int, Optional[str]]]) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM vouch_points")
            for user_id, (points, username) in counts.items():
                cur.execute(
                    "INSERT INTO vouch_points (user_id, points, username) VALUES (%s, %s, %s)",
                    (user_id, max(0, int(points)), username),
                )
                cur.execute(
                    "INSERT INTO ledger (user_id, delta, reason, meta) VALUES (%s, %s, %s, %s)",
                    (
                        user_id,
                        int(points),
                        LedgerReason.RECOUNT.value,
                        json.dumps({"vouches": int(points)}),
                    ),
                )
