"""
Settings Service Module

Key/value application settings (currently the UI theme) stored as JSON
strings in the marks database.
"""

import json
import logging
from typing import Any

from .base_database_service import BaseDatabaseService

# Configure logger for this module
logger = logging.getLogger(__name__)

THEMES = ("light", "dark", "system")
DEFAULT_THEME = "system"


class SettingsService(BaseDatabaseService):
    """SQLite helper for application settings."""

    def __init__(self, db_path: str = "data/marks.db"):
        super().__init__(db_path)
        self._init_table()

    def _init_table(self) -> None:
        with self.get_connection() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS settings (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
            conn.commit()

    @staticmethod
    def _decode(raw: str) -> Any:
        # Plain strings written by older clients are not JSON encoded
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return raw

    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value for key, or default when unset."""
        row = self.execute_query(
            "SELECT value FROM settings WHERE key = ?", (key,), fetch_one=True
        )
        if row is None:
            return default
        return self._decode(row["value"])

    def set(self, key: str, value: Any) -> bool:
        """Insert or replace a setting."""
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot encode setting {key}: {e}")
            return False

        result = self.execute_update_delete(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, encoded),
        )
        if result is None:
            return False
        logger.info(f"Saved setting {key}")
        return True

    def get_all(self) -> dict[str, Any]:
        rows = self.execute_query("SELECT key, value FROM settings", fetch_all=True)
        return {row["key"]: self._decode(row["value"]) for row in rows} if rows else {}

    def get_theme(self) -> str:
        theme = self.get("theme")
        return theme if theme in THEMES else DEFAULT_THEME
