"""
Annotations Service Module

This module provides specialized database operations for managing reading
annotations (notes, mistakes and mutashabihat). Each annotation covers a
range of verse text inside one reading unit (hizb, quarter), anchored by
(row id, character offset) pairs.

Schema:
    annotations (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL CHECK(type IN ('note','mistake','mutashabih')),
        hizb INTEGER NOT NULL,
        quarter INTEGER NOT NULL,
        start_row_id INTEGER NOT NULL,
        start_offset INTEGER NOT NULL,
        end_row_id INTEGER NOT NULL,
        end_offset INTEGER NOT NULL,
        color TEXT,
        note TEXT,
        group_id TEXT,
        excerpt TEXT,
        created_at INTEGER NOT NULL
    )

group_id is a plain column, not a foreign key: deleting a group leaves
its former members untouched.
"""

import logging
import sqlite3
import uuid
from typing import Any, Optional

from ..models.annotations import (
    Annotation,
    AnnotationCreate,
    AnnotationFilter,
    AnnotationUpdate,
    Boundary,
    ChangesResult,
    CreatedRecord,
)
from .base_database_service import BaseDatabaseService

# Configure logger for this module
logger = logging.getLogger(__name__)

# Patch fields that map one-to-one onto a column
_SIMPLE_COLUMNS = {
    "type": "type",
    "hizb": "hizb",
    "quarter": "quarter",
    "color": "color",
    "note": "note",
    "group_id": "group_id",
    "excerpt": "excerpt",
}


class AnnotationsService(BaseDatabaseService):
    """
    Service class for managing annotations using SQLite.

    This class provides database operations for storing and retrieving:
    - Annotations with their boundaries, style and optional note/group
    - Filtered listings ordered by creation time
    """

    def __init__(self, db_path: str = "data/marks.db"):
        """
        Initialize the annotations service.

        Args:
            db_path (str): Path to the SQLite database file
        """
        super().__init__(db_path)
        self._init_table()

    def _init_table(self):
        """
        Initialize the annotations table and indexes.
        """
        with self.get_connection() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS annotations (
                    id TEXT PRIMARY KEY,                  -- Opaque unique identifier
                    type TEXT NOT NULL CHECK(type IN ('note','mistake','mutashabih')),
                    hizb INTEGER NOT NULL,                -- Reading unit: hizb (1-60)
                    quarter INTEGER NOT NULL,             -- Reading unit: quarter (1-4)
                    start_row_id INTEGER NOT NULL,        -- Verse row where the range starts
                    start_offset INTEGER NOT NULL,        -- Character offset in the start row
                    end_row_id INTEGER NOT NULL,          -- Verse row where the range ends
                    end_offset INTEGER NOT NULL,          -- Character offset in the end row
                    color TEXT,                           -- Text/background color in hex format
                    note TEXT,                            -- Free text for notes
                    group_id TEXT,                        -- Mutashabih group (may dangle)
                    excerpt TEXT,                         -- Cached copy of the covered text
                    created_at INTEGER NOT NULL           -- Milliseconds since epoch
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_annotations_hizb_quarter
                ON annotations(hizb, quarter)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_annotations_type
                ON annotations(type)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_annotations_group
                ON annotations(group_id)
            """)
            conn.commit()

    def _row_to_annotation(self, row: sqlite3.Row) -> Annotation:
        """
        Convert a database row to an Annotation model.

        Args:
            row: SQLite row object

        Returns:
            Annotation
        """
        return Annotation(
            id=row["id"],
            type=row["type"],
            hizb=row["hizb"],
            quarter=row["quarter"],
            start=Boundary(row_id=row["start_row_id"], offset=row["start_offset"]),
            end=Boundary(row_id=row["end_row_id"], offset=row["end_offset"]),
            color=row["color"],
            note=row["note"],
            group_id=row["group_id"],
            excerpt=row["excerpt"] or "",
            created_at=row["created_at"],
        )

    def create_annotation(self, payload: AnnotationCreate) -> Optional[CreatedRecord]:
        """
        Persist a new annotation.

        Args:
            payload (AnnotationCreate): Annotation fields; an id is generated when absent

        Returns:
            Optional[CreatedRecord]: The id and creation timestamp, or None if creation failed
        """
        annotation_id = payload.id or str(uuid.uuid4())
        created_at = self.get_current_timestamp_ms()

        query = """
            INSERT INTO annotations (
                id, type, hizb, quarter,
                start_row_id, start_offset, end_row_id, end_offset,
                color, note, group_id, excerpt, created_at
            ) VALUES (
                :id, :type, :hizb, :quarter,
                :start_row_id, :start_offset, :end_row_id, :end_offset,
                :color, :note, :group_id, :excerpt, :created_at
            )
        """
        params = {
            "id": annotation_id,
            "type": payload.type.value,
            "hizb": payload.hizb,
            "quarter": payload.quarter,
            "start_row_id": payload.start.row_id,
            "start_offset": payload.start.offset,
            "end_row_id": payload.end.row_id,
            "end_offset": payload.end.offset,
            "color": payload.color,
            "note": payload.note,
            "group_id": payload.group_id,
            "excerpt": payload.excerpt,
            "created_at": created_at,
        }

        if not self.execute_insert(query, params):
            logger.error(f"Failed to save {payload.type.value} annotation {annotation_id}")
            return None

        logger.info(
            f"Saved {payload.type.value} annotation {annotation_id} "
            f"(hizb={payload.hizb}, quarter={payload.quarter})"
        )
        return CreatedRecord(id=annotation_id, created_at=created_at)

    def list_annotations(
        self, filters: Optional[AnnotationFilter] = None
    ) -> Optional[list[Annotation]]:
        """
        Retrieve annotations, optionally filtered by type, unit or group.

        Args:
            filters (Optional[AnnotationFilter]): Equality filters; unset fields are ignored

        Returns:
            Optional[list[Annotation]]: Matching annotations ordered by creation time,
            or None if the query failed
        """
        where: list[str] = []
        params: dict[str, Any] = {}
        if filters is not None:
            if filters.type is not None:
                where.append("type = :type")
                params["type"] = filters.type.value
            if filters.hizb is not None:
                where.append("hizb = :hizb")
                params["hizb"] = filters.hizb
            if filters.quarter is not None:
                where.append("quarter = :quarter")
                params["quarter"] = filters.quarter
            if filters.group_id is not None:
                where.append("group_id = :group_id")
                params["group_id"] = filters.group_id

        query = "SELECT * FROM annotations"
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY created_at ASC, id ASC"

        rows = self.execute_query(query, params, fetch_all=True)
        if rows is None:
            logger.error("Failed to list annotations")
            return None
        return [self._row_to_annotation(row) for row in rows]

    def get_annotation(self, annotation_id: str) -> Optional[Annotation]:
        """
        Retrieve a single annotation by id.

        Args:
            annotation_id (str): Annotation identifier

        Returns:
            Optional[Annotation]: The annotation, or None if not found
        """
        row = self.execute_query(
            "SELECT * FROM annotations WHERE id = ?", (annotation_id,), fetch_one=True
        )
        return self._row_to_annotation(row) if row else None

    def update_annotation(
        self, annotation_id: str, patch: AnnotationUpdate
    ) -> Optional[ChangesResult]:
        """
        Apply a partial update to an annotation.

        Only fields explicitly set on the patch are written, so a field can
        be cleared by setting it to None.

        Args:
            annotation_id (str): Annotation identifier
            patch (AnnotationUpdate): Fields to change

        Returns:
            Optional[ChangesResult]: Number of rows changed, or None if the update failed
        """
        fields = patch.model_dump(exclude_unset=True)
        sets: list[str] = []
        params: dict[str, Any] = {"id": annotation_id}

        for key, column in _SIMPLE_COLUMNS.items():
            if key in fields:
                value = fields[key]
                if key == "type" and value is not None:
                    value = patch.type.value
                sets.append(f"{column} = :{column}")
                params[column] = value

        if patch.start is not None:
            sets += ["start_row_id = :start_row_id", "start_offset = :start_offset"]
            params["start_row_id"] = patch.start.row_id
            params["start_offset"] = patch.start.offset
        if patch.end is not None:
            sets += ["end_row_id = :end_row_id", "end_offset = :end_offset"]
            params["end_row_id"] = patch.end.row_id
            params["end_offset"] = patch.end.offset

        if not sets:
            return ChangesResult(changes=0)

        query = f"UPDATE annotations SET {', '.join(sets)} WHERE id = :id"
        changes = self.execute_update_delete(query, params)
        if changes is None:
            return None
        if changes:
            logger.info(f"Updated annotation {annotation_id}: {sorted(fields)}")
        return ChangesResult(changes=changes)

    def delete_annotation(self, annotation_id: str) -> Optional[ChangesResult]:
        """
        Delete an annotation by id.

        Args:
            annotation_id (str): Annotation identifier

        Returns:
            Optional[ChangesResult]: Number of rows deleted, or None if the delete failed
        """
        changes = self.execute_update_delete(
            "DELETE FROM annotations WHERE id = ?", (annotation_id,)
        )
        if changes is None:
            return None
        if changes:
            logger.info(f"Deleted annotation {annotation_id}")
        return ChangesResult(changes=changes)
