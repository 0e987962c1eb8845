"""Spend Notifier — Device Token Store.

Async SQLite persistence for device registrations using aiosqlite.
One row per device token. Every operation:
  - Uses parameterized queries (? placeholders, never f-strings for SQL)
  - Commits after writes
  - Returns DeviceRegistration objects (converts Row objects)
  - Logs operations at DEBUG level, tokens as 8-char previews
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import aiosqlite

from spend_notifier.models import DeviceRegistration
from spend_notifier.utils.logger import get_logger, token_preview

logger = get_logger(__name__)

MEMORY_DB = ":memory:"

# ── Schema Definitions ────────────────────────────────────
SCHEMA_SQL = """
-- ═══ Device Registrations ═══
-- One row per push device token; the registry owns all writes.
CREATE TABLE IF NOT EXISTS device_registrations (
    device_token          TEXT    PRIMARY KEY,
    platform_endpoint_arn TEXT    NOT NULL,
    user_id               TEXT,
    registration_date     TEXT    NOT NULL,
    last_updated          TEXT    NOT NULL,
    active                INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_devices_endpoint ON device_registrations(platform_endpoint_arn);
CREATE INDEX IF NOT EXISTS idx_devices_user     ON device_registrations(user_id);
CREATE INDEX IF NOT EXISTS idx_devices_active   ON device_registrations(active);
"""

_COLUMNS = (
    "device_token, platform_endpoint_arn, user_id, "
    "registration_date, last_updated, active"
)


def _row_to_registration(row: Any) -> DeviceRegistration:
    return DeviceRegistration.from_db_row(dict(row))


class DeviceStore:
    """Key-value store of device registrations keyed by token.

    Attributes:
        db_path: Resolved database path, or ":memory:".
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite file (parent directories are
                created), or ":memory:" for a private in-memory database.
        """
        self.db_path = db_path if db_path == MEMORY_DB else str(Path(db_path).resolve())
        self._connection: Optional[aiosqlite.Connection] = None
        logger.debug("Device store initialized with path: %s", self.db_path)

    async def initialize(self) -> None:
        """Open the connection, set pragmas and create the schema."""
        if self.db_path != MEMORY_DB:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        logger.info("Connecting to device store: %s", self.db_path)
        self._connection = await aiosqlite.connect(self.db_path)
        if self.db_path != MEMORY_DB:
            await self._connection.execute("PRAGMA journal_mode=WAL")
        self._connection.row_factory = aiosqlite.Row

        await self._connection.executescript(SCHEMA_SQL)
        await self._connection.commit()
        logger.info("Device store initialized")

    async def get_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            await self.initialize()
        return self._connection

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Device store connection closed")

    async def __aenter__(self) -> "DeviceStore":
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ═══════════════════════════════════════════════════════
    # Reads
    # ═══════════════════════════════════════════════════════

    async def get(self, device_token: str) -> Optional[DeviceRegistration]:
        """Point lookup by device token."""
        conn = await self.get_connection()
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM device_registrations WHERE device_token = ?",
            (device_token,),
        )
        row = await cursor.fetchone()
        logger.debug("get(%s) found=%s", token_preview(device_token), row is not None)
        return _row_to_registration(row) if row else None

    async def get_by_endpoint(
        self, endpoint_arn: str,
    ) -> Optional[DeviceRegistration]:
        """Lookup by platform endpoint handle."""
        conn = await self.get_connection()
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM device_registrations "
            "WHERE platform_endpoint_arn = ? ORDER BY last_updated DESC LIMIT 1",
            (endpoint_arn,),
        )
        row = await cursor.fetchone()
        return _row_to_registration(row) if row else None

    async def list_by_user(
        self, user_id: str, limit: int = 50,
    ) -> list[DeviceRegistration]:
        """Active registrations for a user, newest first."""
        conn = await self.get_connection()
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM device_registrations "
            "WHERE user_id = ? AND active = 1 "
            "ORDER BY registration_date DESC LIMIT ?",
            (user_id, limit),
        )
        rows = await cursor.fetchall()
        logger.debug("list_by_user(%s) → %d devices", user_id, len(rows))
        return [_row_to_registration(r) for r in rows]

    async def count_by_status(self) -> tuple[int, int]:
        """Return (active, disabled) registration counts."""
        conn = await self.get_connection()
        cursor = await conn.execute(
            "SELECT "
            "COALESCE(SUM(CASE WHEN active = 1 THEN 1 ELSE 0 END), 0), "
            "COALESCE(SUM(CASE WHEN active = 0 THEN 1 ELSE 0 END), 0) "
            "FROM device_registrations"
        )
        row = await cursor.fetchone()
        return int(row[0]), int(row[1])

    # ═══════════════════════════════════════════════════════
    # Writes
    # ═══════════════════════════════════════════════════════

    async def upsert(self, registration: DeviceRegistration) -> None:
        """Insert or replace the record for registration.device_token."""
        conn = await self.get_connection()
        d = registration.to_db_dict()
        await conn.execute(
            """
            INSERT INTO device_registrations (
                device_token, platform_endpoint_arn, user_id,
                registration_date, last_updated, active
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(device_token) DO UPDATE SET
                platform_endpoint_arn = excluded.platform_endpoint_arn,
                user_id               = excluded.user_id,
                registration_date     = excluded.registration_date,
                last_updated          = excluded.last_updated,
                active                = excluded.active
            """,
            (
                d["device_token"], d["platform_endpoint_arn"], d["user_id"],
                d["registration_date"], d["last_updated"], d["active"],
            ),
        )
        await conn.commit()
        logger.debug(
            "Upserted device %s → %s",
            token_preview(registration.device_token),
            registration.platform_endpoint_arn,
        )

    async def replace_token(
        self, old_token: str, registration: DeviceRegistration,
    ) -> None:
        """Move a record to a new token key in one transaction."""
        conn = await self.get_connection()
        d = registration.to_db_dict()
        await conn.execute(
            "DELETE FROM device_registrations WHERE device_token = ?",
            (old_token,),
        )
        await conn.execute(
            f"INSERT OR REPLACE INTO device_registrations ({_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                d["device_token"], d["platform_endpoint_arn"], d["user_id"],
                d["registration_date"], d["last_updated"], d["active"],
            ),
        )
        await conn.commit()
        logger.debug(
            "Re-keyed device %s → %s",
            token_preview(old_token), token_preview(registration.device_token),
        )

    async def mark_disabled(self, endpoint_arn: str, when: str) -> int:
        """Disable every record bound to an endpoint handle.

        Returns:
            Number of rows updated.
        """
        conn = await self.get_connection()
        cursor = await conn.execute(
            "UPDATE device_registrations SET active = 0, last_updated = ? "
            "WHERE platform_endpoint_arn = ?",
            (when, endpoint_arn),
        )
        await conn.commit()
        logger.debug("Disabled %d record(s) for %s", cursor.rowcount, endpoint_arn)
        return cursor.rowcount

    async def delete(self, device_token: str) -> bool:
        """Delete a record. Returns True if a row was removed."""
        conn = await self.get_connection()
        cursor = await conn.execute(
            "DELETE FROM device_registrations WHERE device_token = ?",
            (device_token,),
        )
        await conn.commit()
        logger.debug("Deleted device %s", token_preview(device_token))
        return cursor.rowcount > 0
