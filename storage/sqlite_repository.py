"""SQLite-backed persistence layer for users, wallets and threshold alerts."""
from __future__ import annotations

import asyncio
import math
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from analysis.models import Alert
from constants import (
    ALERT_CONDITIONS,
    ALERT_FREQUENCIES,
    ALERT_TYPES,
    DEFAULT_COOLDOWN_MINUTES,
    DEFAULT_DB_PATH,
    SUPPORTED_CHAINS,
)
from errors import ValidationError
from storage.models import UserRecord, WalletRecord

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, ISO_FORMAT).replace(tzinfo=timezone.utc)


def _now() -> str:
    return _format_ts(datetime.now(timezone.utc))


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=row["id"],
        owner=row["user_id"],
        type=row["type"],
        chain=row["chain"],
        asset=row["asset"],
        condition=row["condition"],
        threshold=row["threshold"],
        frequency=row["frequency"],
        enabled=bool(row["enabled"]),
        last_triggered_at=_parse_ts(row["last_triggered_at"]),
        cooldown_minutes=row["cooldown_minutes"],
        target=row["chat_id"],
        created_at=_parse_ts(row["created_at"]),
    )


def _validate_alert(
    alert_type: str,
    chain: str,
    asset: str,
    condition: str,
    threshold,
    frequency: str,
    cooldown_minutes: int,
) -> tuple:
    alert_type = (alert_type or "").strip().lower()
    if alert_type not in ALERT_TYPES:
        raise ValidationError(f"Alert type must be one of: {', '.join(ALERT_TYPES)}")
    chain = (chain or "").strip().lower()
    if chain not in SUPPORTED_CHAINS:
        raise ValidationError(f"Chain must be one of: {', '.join(SUPPORTED_CHAINS)}")
    asset = (asset or "").strip().upper()
    if not asset:
        raise ValidationError("Asset symbol is required")
    condition = (condition or "").strip().lower()
    if condition not in ALERT_CONDITIONS:
        raise ValidationError(f"Condition must be one of: {', '.join(ALERT_CONDITIONS)}")
    frequency = (frequency or "").strip().lower()
    if frequency not in ALERT_FREQUENCIES:
        raise ValidationError(f"Frequency must be one of: {', '.join(ALERT_FREQUENCIES)}")
    try:
        threshold = float(threshold)
    except (TypeError, ValueError):
        raise ValidationError(f"Threshold {threshold!r} is not a number") from None
    if not math.isfinite(threshold):
        raise ValidationError("Threshold must be a finite number")
    if isinstance(cooldown_minutes, bool) or not isinstance(cooldown_minutes, int) or cooldown_minutes < 0:
        raise ValidationError("Cooldown must be a non-negative number of minutes")
    return alert_type, chain, asset, condition, threshold, frequency, cooldown_minutes


class SQLiteRepository:
    """Provides async-friendly helpers for the user, wallet and alert store."""

    def __init__(self, db_path: Path | str = Path(DEFAULT_DB_PATH)) -> None:
        self.db_path = Path(db_path)
        if self.db_path != Path(":memory:"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

    def _configure(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError:
                pass
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    def _create_schema(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                chat_id TEXT,
                locale TEXT NOT NULL DEFAULT 'en',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS wallets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                chain TEXT NOT NULL,
                address TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                type TEXT NOT NULL,
                chain TEXT NOT NULL,
                asset TEXT NOT NULL,
                condition TEXT NOT NULL,
                threshold REAL NOT NULL,
                frequency TEXT NOT NULL DEFAULT 'instant',
                enabled INTEGER NOT NULL DEFAULT 1,
                last_triggered_at TEXT,
                cooldown_minutes INTEGER NOT NULL DEFAULT 60,
                created_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_wallets_user
                ON wallets(user_id);
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_alerts_user
                ON alerts(user_id);
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_alerts_enabled
                ON alerts(enabled);
            """,
        ]

        with self._lock:
            cursor = self._connection.cursor()
            for statement in statements:
                cursor.execute(statement)
            self._connection.commit()
            cursor.close()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    # --- Users ---

    async def upsert_user(self, user_id: str, locale: str = "en") -> None:
        await self._run(self._upsert_user_sync, str(user_id), locale or "en")

    def _upsert_user_sync(self, user_id: str, locale: str) -> None:
        now = _now()
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO users (user_id, locale, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    locale = excluded.locale,
                    updated_at = excluded.updated_at
                """,
                (user_id, locale, now, now),
            )
            self._connection.commit()
            cursor.close()

    async def set_chat_id(self, user_id: str, chat_id: str) -> None:
        """Stores the chat a user's alerts are delivered to, creating the user if needed."""
        await self._run(self._set_chat_id_sync, str(user_id), str(chat_id))

    def _set_chat_id_sync(self, user_id: str, chat_id: str) -> None:
        now = _now()
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO users (user_id, chat_id, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    chat_id = excluded.chat_id,
                    updated_at = excluded.updated_at
                """,
                (user_id, chat_id, now, now),
            )
            self._connection.commit()
            cursor.close()

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return await self._run(self._get_user_sync, str(user_id))

    def _get_user_sync(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            cursor.close()
        if row is None:
            return None
        return UserRecord(
            user_id=row["user_id"],
            chat_id=row["chat_id"],
            locale=row["locale"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    # --- Wallets ---

    async def save_active_wallet(self, user_id: str, chain: str, address: str) -> int:
        """Makes (chain, address) the user's only active wallet."""
        return await self._run(self._save_active_wallet_sync, str(user_id), chain, address)

    def _save_active_wallet_sync(self, user_id: str, chain: str, address: str) -> int:
        now = _now()
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO users (user_id, created_at, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (user_id, now, now),
            )
            cursor.execute("UPDATE wallets SET is_active = 0 WHERE user_id = ?", (user_id,))
            cursor.execute(
                """
                INSERT INTO wallets (user_id, chain, address, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (user_id, chain, address, now),
            )
            wallet_id = cursor.lastrowid
            self._connection.commit()
            cursor.close()
        return wallet_id

    async def get_active_wallet(self, user_id: str) -> Optional[WalletRecord]:
        return await self._run(self._get_active_wallet_sync, str(user_id))

    def _get_active_wallet_sync(self, user_id: str) -> Optional[WalletRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM wallets
                WHERE user_id = ? AND is_active = 1
                ORDER BY id DESC
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            cursor.close()
        if row is None:
            return None
        return WalletRecord(
            id=row["id"],
            user_id=row["user_id"],
            chain=row["chain"],
            address=row["address"],
            is_active=bool(row["is_active"]),
            created_at=_parse_ts(row["created_at"]),
        )

    # --- Alerts ---

    async def create_alert(
        self,
        *,
        owner: str,
        alert_type: str,
        chain: str,
        asset: str,
        condition: str,
        threshold,
        frequency: str = "instant",
        cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES,
    ) -> int:
        values = _validate_alert(alert_type, chain, asset, condition, threshold, frequency, cooldown_minutes)
        return await self._run(self._create_alert_sync, str(owner), *values)

    def _create_alert_sync(
        self,
        owner: str,
        alert_type: str,
        chain: str,
        asset: str,
        condition: str,
        threshold: float,
        frequency: str,
        cooldown_minutes: int,
    ) -> int:
        now = _now()
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO users (user_id, created_at, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (owner, now, now),
            )
            cursor.execute(
                """
                INSERT INTO alerts (
                    user_id,
                    type,
                    chain,
                    asset,
                    condition,
                    threshold,
                    frequency,
                    enabled,
                    cooldown_minutes,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (owner, alert_type, chain, asset, condition, threshold, frequency, cooldown_minutes, now),
            )
            alert_id = cursor.lastrowid
            self._connection.commit()
            cursor.close()
        return alert_id

    async def get_alert(self, alert_id: int) -> Optional[Alert]:
        return await self._run(self._get_alert_sync, int(alert_id))

    def _get_alert_sync(self, alert_id: int) -> Optional[Alert]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT a.*, u.chat_id
                FROM alerts a
                LEFT JOIN users u ON u.user_id = a.user_id
                WHERE a.id = ?
                """,
                (alert_id,),
            )
            row = cursor.fetchone()
            cursor.close()
        return _row_to_alert(row) if row is not None else None

    async def list_alerts(self, owner: str) -> list[Alert]:
        return await self._run(self._list_alerts_sync, str(owner))

    def _list_alerts_sync(self, owner: str) -> list[Alert]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT a.*, u.chat_id
                FROM alerts a
                LEFT JOIN users u ON u.user_id = a.user_id
                WHERE a.user_id = ?
                ORDER BY a.id DESC
                """,
                (owner,),
            )
            rows = cursor.fetchall()
            cursor.close()
        return [_row_to_alert(row) for row in rows]

    async def list_enabled_with_target(self) -> list[Alert]:
        """Enabled alerts whose owner has a notification target; the rest are omitted."""
        return await self._run(self._list_enabled_with_target_sync)

    def _list_enabled_with_target_sync(self) -> list[Alert]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT a.*, u.chat_id
                FROM alerts a
                JOIN users u ON u.user_id = a.user_id
                WHERE a.enabled = 1
                  AND u.chat_id IS NOT NULL
                  AND u.chat_id != ''
                ORDER BY a.id ASC
                """
            )
            rows = cursor.fetchall()
            cursor.close()
        return [_row_to_alert(row) for row in rows]

    async def set_alert_enabled(self, owner: str, alert_id: int, enabled: bool) -> bool:
        return await self._run(self._set_alert_enabled_sync, str(owner), int(alert_id), bool(enabled))

    def _set_alert_enabled_sync(self, owner: str, alert_id: int, enabled: bool) -> bool:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "UPDATE alerts SET enabled = ? WHERE id = ? AND user_id = ?",
                (1 if enabled else 0, alert_id, owner),
            )
            changed = cursor.rowcount > 0
            self._connection.commit()
            cursor.close()
        return changed

    async def delete_alert(self, owner: str, alert_id: int) -> bool:
        return await self._run(self._delete_alert_sync, str(owner), int(alert_id))

    def _delete_alert_sync(self, owner: str, alert_id: int) -> bool:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute("DELETE FROM alerts WHERE id = ? AND user_id = ?", (alert_id, owner))
            changed = cursor.rowcount > 0
            self._connection.commit()
            cursor.close()
        return changed

    async def mark_alert_triggered(self, alert_id: int, triggered_at: datetime) -> bool:
        """Durably records a delivered trigger; the cooldown counts from ``triggered_at``."""
        return await self._run(self._mark_alert_triggered_sync, int(alert_id), triggered_at)

    def _mark_alert_triggered_sync(self, alert_id: int, triggered_at: datetime) -> bool:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "UPDATE alerts SET last_triggered_at = ? WHERE id = ?",
                (_format_ts(triggered_at), alert_id),
            )
            changed = cursor.rowcount > 0
            self._connection.commit()
            cursor.close()
        return changed

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._connection.commit()
            self._connection.close()


__all__ = ["SQLiteRepository", "UserRecord", "WalletRecord"]
