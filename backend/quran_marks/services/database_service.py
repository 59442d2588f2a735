"""
Database Service Module

This module provides a facade over the application's two SQLite databases:

1. The verse database (read-only) - the Warsh Quran text, one row per verse
2. The marks database (writable) - annotations, mutashabih groups and settings

Routers use the module-level ``db_service`` instance; tests build their own
instance over temporary files.
"""

import logging
import os
from typing import Optional

from .annotations_service import AnnotationsService
from .groups_service import GroupsService
from .settings_service import SettingsService
from .verse_store_service import VerseStoreService

# Configure logger for this module
logger = logging.getLogger(__name__)

DEFAULT_QURAN_DB_PATH = "data/quran.db"
DEFAULT_MARKS_DB_PATH = "data/marks.db"


class DatabaseService:
    """
    A facade service class coordinating the verse store and the marks services.

    It owns:
    - VerseStoreService: rows of each (hizb, quarter) reading unit
    - AnnotationsService: notes, mistakes and mutashabihat
    - GroupsService: mutashabih groups and bulk recolor
    - SettingsService: key/value UI settings
    """

    def __init__(
        self,
        quran_db_path: Optional[str] = None,
        marks_db_path: Optional[str] = None,
    ):
        """
        Initialize the database service and its specialized services.

        Args:
            quran_db_path (Optional[str]): Path to the verse database. Falls back to the
                QURAN_DB_PATH environment variable, then "data/quran.db"
            marks_db_path (Optional[str]): Path to the marks database. Falls back to the
                MARKS_DB_PATH environment variable, then "data/marks.db"
        """
        self.quran_db_path = quran_db_path or os.environ.get(
            "QURAN_DB_PATH", DEFAULT_QURAN_DB_PATH
        )
        self.marks_db_path = marks_db_path or os.environ.get(
            "MARKS_DB_PATH", DEFAULT_MARKS_DB_PATH
        )

        self.verses = VerseStoreService(self.quran_db_path)
        self.annotations = AnnotationsService(self.marks_db_path)
        self.groups = GroupsService(self.marks_db_path)
        self.settings = SettingsService(self.marks_db_path)

        logger.info(
            f"Database service ready (verses={self.quran_db_path}, marks={self.marks_db_path})"
        )


# Global instance
db_service = DatabaseService()
