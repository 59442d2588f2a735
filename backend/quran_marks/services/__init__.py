"""
Services Package

This package contains the verse store, the marks persistence services
(annotations, groups, settings) and the annotation range engine built on
top of them.
"""

from .annotations_service import AnnotationsService
from .base_database_service import BaseDatabaseService
from .commands import CommandDispatcher, NavigateToReading, OpenAnnotationsPanel
from .database_service import DatabaseService, db_service
from .groups_service import GroupsService
from .reading_session import ReadingSession
from .reading_unit import (
    DegenerateRangeError,
    RangeError,
    ReadingUnit,
    RenderedTextMap,
    RowNotInUnitError,
)
from .settings_service import SettingsService
from .verse_store_service import VerseStoreService

__all__ = [
    "AnnotationsService",
    "BaseDatabaseService",
    "CommandDispatcher",
    "DatabaseService",
    "db_service",
    "DegenerateRangeError",
    "GroupsService",
    "NavigateToReading",
    "OpenAnnotationsPanel",
    "RangeError",
    "ReadingSession",
    "ReadingUnit",
    "RenderedTextMap",
    "RowNotInUnitError",
    "SettingsService",
    "VerseStoreService",
]
