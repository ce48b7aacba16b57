from __future__ import annotations

import sqlite3
from typing import Optional

from domain.repositories import SettingsRepository, StorageError


class SqliteSettingsRepository(SettingsRepository):
    """
    SQLite-backed implementation of `SettingsRepository`.

    Manages the `settings` table, a plain key/value store used for the
    vouch multiplier and its expiry.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_table(self) -> None:
        try:
            conn = self._get_connection()
            try:
                with conn:
                    conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS settings (
                            key TEXT PRIMARY KEY,
                            value TEXT NOT NULL
                        )
                        """
                    )
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            conn = self._get_connection()
            try:
                cur = conn.cursor()
                cur.execute("SELECT value FROM settings WHERE key = ?", (key,))
                row = cur.fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

        if not row:
            return default
        return row[0]

    def set_setting(self, key: str, value: str) -> None:
        try:
            conn = self._get_connection()
            try:
                with conn:
                    conn.execute(
                        """
                        INSERT INTO settings (key, value) VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value
                        """,
                        (key, str(value)),
                    )
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
