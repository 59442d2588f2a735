"""
Annotation Groups Service Module

This module provides database operations for mutashabih groups: named
color buckets that several mutashabih annotations can point at. A group's
color is the default offered to new members and can be pushed onto every
member in one batch.
"""

import logging
import sqlite3
import uuid
from typing import Any, Optional

from ..models.annotations import (
    AnnotationGroup,
    AnnotationType,
    ChangesResult,
    CreatedRecord,
    GroupCreate,
    GroupUpdate,
)
from .base_database_service import BaseDatabaseService

# Configure logger for this module
logger = logging.getLogger(__name__)


class GroupsService(BaseDatabaseService):
    """
    Service class for managing mutashabih groups using SQLite.

    Deleting a group never cascades to annotations; members keep their
    group_id and color.
    """

    def __init__(self, db_path: str = "data/marks.db"):
        """
        Initialize the groups service.

        Args:
            db_path (str): Path to the SQLite database file
        """
        super().__init__(db_path)
        self._init_table()

    def _init_table(self):
        """
        Initialize the annotation_groups table.
        """
        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS annotation_groups (
                    id TEXT PRIMARY KEY,          -- Opaque unique identifier
                    color TEXT NOT NULL,          -- Group color in hex format
                    label TEXT,                   -- Optional display name
                    created_at INTEGER NOT NULL   -- Milliseconds since epoch
                )
            """)
            conn.commit()

    def _row_to_group(self, row: sqlite3.Row) -> AnnotationGroup:
        return AnnotationGroup(
            id=row["id"],
            color=row["color"],
            label=row["label"],
            created_at=row["created_at"],
        )

    def create_group(self, payload: GroupCreate) -> Optional[CreatedRecord]:
        """
        Persist a new group.

        Args:
            payload (GroupCreate): Group color and optional label/id

        Returns:
            Optional[CreatedRecord]: The id and creation timestamp, or None if creation failed
        """
        group_id = payload.id or str(uuid.uuid4())
        created_at = self.get_current_timestamp_ms()

        inserted = self.execute_insert(
            "INSERT INTO annotation_groups (id, color, label, created_at) VALUES (?, ?, ?, ?)",
            (group_id, payload.color, payload.label, created_at),
        )
        if not inserted:
            return None

        logger.info(f"Created group {group_id} with color {payload.color}")
        return CreatedRecord(id=group_id, created_at=created_at)

    def list_groups(self) -> Optional[list[AnnotationGroup]]:
        """Return all groups ordered by creation time, or None if the query failed."""
        rows = self.execute_query(
            "SELECT * FROM annotation_groups ORDER BY created_at ASC, id ASC",
            fetch_all=True,
        )
        if rows is None:
            logger.error("Failed to list groups")
            return None
        return [self._row_to_group(row) for row in rows]

    def get_group(self, group_id: str) -> Optional[AnnotationGroup]:
        """Retrieve a single group by id."""
        row = self.execute_query(
            "SELECT * FROM annotation_groups WHERE id = ?", (group_id,), fetch_one=True
        )
        return self._row_to_group(row) if row else None

    def update_group(
        self, group_id: str, patch: GroupUpdate
    ) -> Optional[ChangesResult]:
        """
        Change a group's color and/or label.

        Args:
            group_id (str): Group identifier
            patch (GroupUpdate): Fields to change; unset fields are left alone

        Returns:
            Optional[ChangesResult]: Number of rows changed, or None if the update failed
        """
        fields = patch.model_dump(exclude_unset=True)
        sets: list[str] = []
        params: dict[str, Any] = {"id": group_id}

        # color is NOT NULL, so an explicit None is ignored
        if fields.get("color") is not None:
            sets.append("color = :color")
            params["color"] = fields["color"]
        if "label" in fields:
            sets.append("label = :label")
            params["label"] = fields["label"]

        if not sets:
            return ChangesResult(changes=0)

        changes = self.execute_update_delete(
            f"UPDATE annotation_groups SET {', '.join(sets)} WHERE id = :id", params
        )
        if changes is None:
            return None
        if changes:
            logger.info(f"Updated group {group_id}: {sorted(fields)}")
        return ChangesResult(changes=changes)

    def delete_group(self, group_id: str) -> Optional[ChangesResult]:
        """
        Delete a group. Member annotations are not touched.

        Args:
            group_id (str): Group identifier

        Returns:
            Optional[ChangesResult]: Number of rows deleted, or None if the delete failed
        """
        changes = self.execute_update_delete(
            "DELETE FROM annotation_groups WHERE id = ?", (group_id,)
        )
        if changes is None:
            return None
        if changes:
            logger.info(f"Deleted group {group_id}")
        return ChangesResult(changes=changes)

    def apply_group_color_to_annotations(
        self, group_id: str
    ) -> Optional[ChangesResult]:
        """
        Copy the group's current color onto every mutashabih annotation in it.

        Args:
            group_id (str): Group identifier

        Returns:
            Optional[ChangesResult]: Number of annotations recolored, or None if the
            group does not exist or the update failed
        """
        group = self.get_group(group_id)
        if group is None:
            logger.warning(f"Cannot apply color: group {group_id} not found")
            return None

        changes = self.execute_update_delete(
            """
            UPDATE annotations
            SET color = ?
            WHERE group_id = ? AND type = ?
            """,
            (group.color, group_id, AnnotationType.MUTASHABIH.value),
        )
        if changes is None:
            return None

        logger.info(
            f"Applied group {group_id} color {group.color} to {changes} annotations"
        )
        return ChangesResult(changes=changes)
