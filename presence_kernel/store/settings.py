"""
Settings Store: persists controller settings across restarts.

One row per controller identity holding the JSON layout
{locked, targets, intervalMs}. Loading is lenient: a missing row, corrupt
JSON or invalid fields fall back to safe defaults.
"""

import json
import sqlite3
from datetime import datetime
from typing import Optional

from loguru import logger

from presence_kernel.models.settings import ControllerSettings


class SettingsStore:
    """
    SQLite-backed settings store.
    Writes are synchronous so a lock flip is durable before it takes effect.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the settings table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS controller_settings (
                controller_id TEXT PRIMARY KEY,
                settings_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def load_raw(self, controller_id: str) -> Optional[str]:
        """The stored JSON text for a controller, if any."""
        row = self._conn.execute(
            "SELECT settings_json FROM controller_settings WHERE controller_id = ?",
            (controller_id,),
        ).fetchone()
        return row["settings_json"] if row else None

    def load(
        self, controller_id: str, default: Optional[ControllerSettings] = None
    ) -> ControllerSettings:
        """Load settings, falling back to `default` (or built-in defaults)."""
        text = self.load_raw(controller_id)
        if text is None:
            return (default or ControllerSettings()).model_copy(deep=True)
        try:
            raw = json.loads(text)
        except (ValueError, TypeError) as e:
            logger.warning(f"[STORE] Corrupt settings for {controller_id}, using defaults: {e}")
            return (default or ControllerSettings()).model_copy(deep=True)
        return ControllerSettings.load_lenient(raw)

    def save(self, controller_id: str, settings: ControllerSettings) -> None:
        """Insert or replace the settings row."""
        self._conn.execute(
            """
            INSERT INTO controller_settings (controller_id, settings_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(controller_id) DO UPDATE SET
                settings_json = excluded.settings_json,
                updated_at = excluded.updated_at
            """,
            (
                controller_id,
                json.dumps(settings.to_persisted()),
                datetime.utcnow().isoformat(),
            ),
        )
        self._conn.commit()

    def write_raw(self, controller_id: str, settings_json: str) -> None:
        """Store raw JSON text as-is, without validation."""
        self._conn.execute(
            "INSERT OR REPLACE INTO controller_settings (controller_id, settings_json, updated_at) "
            "VALUES (?, ?, ?)",
            (controller_id, settings_json, datetime.utcnow().isoformat()),
        )
        self._conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
