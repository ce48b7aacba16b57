from __future__ import annotations

from typing import Optional

import psycopg2

from domain.repositories import SettingsRepository, StorageError


class PostgresSettingsRepository(SettingsRepository):
    """Postgres-backed implementation of `SettingsRepository`."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._ensure_table()

    def _get_connection(self):
        return psycopg2.connect(self._dsn)

    def _ensure_table(self) -> None:
        self._execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )

    def _execute(self, query: str, params: tuple = (), fetch: bool = False):
        try:
            conn = self._get_connection()
        except psycopg2.Error as exc:
            raise StorageError(f"Could not connect to Postgres: {exc}") from exc

        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    if fetch:
                        return cur.fetchone()
                    return None
        except psycopg2.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self._execute("SELECT value FROM settings WHERE key = %s", (key,), fetch=True)
        if not row:
            return default
        return row[0]

    def set_setting(self, key: str, value: str) -> None:
        self._execute(
            """
            INSERT INTO settings (key, value) VALUES (%s, %s)
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
            """,
            (key, str(value)),
        )
