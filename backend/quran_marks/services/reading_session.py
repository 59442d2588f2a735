"""
Reading Session Module

The working set behind one reader view: the open reading unit, every
annotation and group known to the marks database, and the operations a
user triggers on them (select, annotate, delete, recolor).

Persistence runs off the event loop in worker threads. In-memory state
only ever changes after the marks database confirms a write, so the
working set always mirrors persisted state.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Optional

from ..models.annotations import (
    Annotation,
    AnnotationCreate,
    AnnotationGroup,
    AnnotationType,
    AnnotationUpdate,
    Boundary,
    GroupCreate,
    GroupSummary,
    GroupUpdate,
    RenderedRow,
    SelectionPreview,
    TextRange,
)
from .annotations_service import AnnotationsService
from .commands import CommandDispatcher, NavigateToReading, OpenAnnotationsPanel
from .groups_service import GroupsService
from .reading_unit import RangeError, ReadingUnit
from .verse_store_service import VerseStoreService, is_valid_unit

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0  # seconds per persistence call

# Color shown for a group id that no longer exists and has no colored member
FALLBACK_GROUP_COLOR = "#fde68a"

PANEL_TABS = ("all",) + tuple(t.value for t in AnnotationType)

# Patch fields backed by NOT NULL columns
REQUIRED_FIELDS = frozenset({"type", "hizb", "quarter", "start", "end"})

# Patch fields that place an annotation in a unit
PLACEMENT_FIELDS = frozenset({"hizb", "quarter", "start", "end"})


class ReadingSession:
    """
    In-memory annotation state for a reader, backed by the marks database.

    Annotations are kept ordered by (created_at, id) so that style
    resolution and listings are reproducible.
    """

    def __init__(
        self,
        annotations_service: AnnotationsService,
        groups_service: GroupsService,
        verse_store: VerseStoreService,
        timeout: float | None = DEFAULT_TIMEOUT,
    ):
        self.annotations_service = annotations_service
        self.groups_service = groups_service
        self.verse_store = verse_store
        self.timeout = timeout

        self.annotations: list[Annotation] = []
        self.groups: list[AnnotationGroup] = []
        self.unit: ReadingUnit | None = None
        self.marks_loaded = False
        self.pending_scroll_row_id: int | None = None

    @classmethod
    def from_database(cls, db: Any, timeout: float | None = DEFAULT_TIMEOUT) -> "ReadingSession":
        """Build a session over the services of a DatabaseService facade."""
        return cls(db.annotations, db.groups, db.verses, timeout=timeout)

    # ------------------------------------------------------------------
    # Persistence plumbing
    # ------------------------------------------------------------------

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        """
        Run a blocking persistence call in a worker thread.

        Returns:
            The call's result, or None if it raised or timed out
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"{operation} timed out after {self.timeout}s")
            return None
        except Exception as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            return None

    def _store(self, annotation: Annotation) -> None:
        self.annotations = [a for a in self.annotations if a.id != annotation.id]
        self.annotations.append(annotation)
        self.annotations.sort(key=lambda a: a.sort_key)

    def _require_unit(self) -> ReadingUnit:
        if self.unit is None:
            raise RuntimeError("No reading unit is open")
        return self.unit

    def get_annotation(self, annotation_id: str) -> Optional[Annotation]:
        return next((a for a in self.annotations if a.id == annotation_id), None)

    def get_group(self, group_id: str) -> Optional[AnnotationGroup]:
        return next((g for g in self.groups if g.id == group_id), None)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_marks(self) -> None:
        """
        Fetch all annotations and groups.

        The two fetches run concurrently and independently: if one fails
        the other still populates, and the failed collection keeps its
        previous contents.
        """
        annotations, groups = await asyncio.gather(
            self._call("Loading annotations", self.annotations_service.list_annotations),
            self._call("Loading groups", self.groups_service.list_groups),
        )
        if annotations is not None:
            self.annotations = sorted(annotations, key=lambda a: a.sort_key)
        if groups is not None:
            self.groups = list(groups)
        self.marks_loaded = True
        logger.info(
            f"Loaded {len(self.annotations)} annotations and {len(self.groups)} groups"
        )

    async def refresh_annotations(self) -> None:
        annotations = await self._call(
            "Refreshing annotations", self.annotations_service.list_annotations
        )
        if annotations is not None:
            self.annotations = sorted(annotations, key=lambda a: a.sort_key)

    async def refresh_groups(self) -> None:
        groups = await self._call("Refreshing groups", self.groups_service.list_groups)
        if groups is not None:
            self.groups = list(groups)

    async def open_unit(
        self, hizb: int, quarter: int, scroll_to_row: int | None = None
    ) -> ReadingUnit:
        """
        Load a reading unit's rows and backfill missing excerpts.

        Args:
            hizb: Hizb number (1-60)
            quarter: Quarter number (1-4)
            scroll_to_row: Row to bring into view once rendered, if it is in the unit

        Raises:
            ValueError: If (hizb, quarter) is not a reading unit
        """
        if not is_valid_unit(hizb, quarter):
            raise ValueError(f"Invalid reading unit: hizb {hizb}, quarter {quarter}")

        rows = await self._call("Loading verses", self.verse_store.get_rows, hizb, quarter)
        self.unit = ReadingUnit(hizb, quarter, rows or [])
        logger.info(f"Opened {self.unit}")

        if not self.marks_loaded:
            await self.load_marks()
        await self.backfill_excerpts()

        if scroll_to_row is not None and self.unit.contains(scroll_to_row):
            self.pending_scroll_row_id = scroll_to_row
        else:
            self.pending_scroll_row_id = None
        return self.unit

    def consume_pending_scroll(self) -> int | None:
        row_id = self.pending_scroll_row_id
        self.pending_scroll_row_id = None
        return row_id

    async def backfill_excerpts(self) -> int:
        """
        Fill in empty excerpts of the open unit's annotations.

        Each excerpt is persisted on its own; a failure is logged and
        skipped without affecting the others.

        Returns:
            Number of excerpts written
        """
        unit = self.unit
        if unit is None or len(unit) == 0:
            return 0

        written = 0
        for annotation in list(self.annotations):
            if not unit.owns(annotation) or annotation.excerpt:
                continue
            try:
                excerpt = unit.excerpt_for(annotation.range)
            except RangeError as e:
                logger.warning(f"Cannot backfill excerpt for {annotation.id}: {e}")
                continue
            if not excerpt:
                continue

            result = await self._call(
                f"Backfilling excerpt for {annotation.id}",
                self.annotations_service.update_annotation,
                annotation.id,
                AnnotationUpdate(excerpt=excerpt),
            )
            if result is None or result.changes == 0:
                continue
            self._store(annotation.model_copy(update={"excerpt": excerpt}))
            written += 1

        if written:
            logger.info(f"Backfilled {written} excerpts in {unit}")
        return written

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def preview_selection(
        self, anchor: Boundary | None, focus: Boundary | None
    ) -> SelectionPreview | None:
        """
        Normalize a selection and preview the text it covers.

        Unresolvable endpoints and empty selections are ignored.
        """
        if self.unit is None or anchor is None or focus is None:
            return None
        try:
            text_range = self.unit.normalize(anchor, focus)
        except RangeError as e:
            logger.debug(f"Ignoring selection: {e}")
            return None
        return SelectionPreview(range=text_range, text=self.unit.preview_text(text_range))

    def preview_positions(
        self, anchor_index: int, focus_index: int
    ) -> SelectionPreview | None:
        """Preview a selection given as caret positions in the rendered unit."""
        if self.unit is None:
            return None
        return self.preview_selection(
            self.unit.resolve_position(anchor_index),
            self.unit.resolve_position(focus_index),
        )

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    async def create_annotation(
        self,
        text_range: TextRange,
        annotation_type: AnnotationType,
        color: str | None = None,
        note: str | None = None,
        group_id: str | None = None,
        annotation_id: str | None = None,
    ) -> Optional[Annotation]:
        """
        Persist an annotation over a range of the open unit.

        The annotation joins the working set only once the marks database
        has stored it.

        Returns:
            The new annotation, or None if persistence failed

        Raises:
            RangeError: If the range is empty or leaves the open unit
            ValueError: If a note annotation has no text
        """
        unit = self._require_unit()
        text_range = unit.validate(text_range)
        if annotation_type == AnnotationType.NOTE and not (note and note.strip()):
            raise ValueError("A note annotation needs note text")

        payload = AnnotationCreate(
            id=annotation_id,
            type=annotation_type,
            hizb=unit.hizb,
            quarter=unit.quarter,
            start=text_range.start,
            end=text_range.end,
            color=color,
            note=note,
            group_id=group_id,
            excerpt=unit.excerpt_for(text_range),
        )
        created = await self._call(
            "Creating annotation", self.annotations_service.create_annotation, payload
        )
        if created is None:
            return None

        annotation = Annotation(
            id=created.id,
            type=annotation_type,
            hizb=unit.hizb,
            quarter=unit.quarter,
            start=text_range.start,
            end=text_range.end,
            color=color,
            note=note,
            group_id=group_id,
            excerpt=payload.excerpt or "",
            created_at=created.created_at,
        )
        self._store(annotation)
        return annotation

    async def create_mutashabih(
        self,
        text_range: TextRange,
        color: str | None,
        group_id: str | None = None,
        annotation_id: str | None = None,
    ) -> Optional[Annotation]:
        """
        Create a mutashabih mark, joining an existing group or starting one.

        A known group's color overrides ``color``. A group id missing from
        the working set is kept as given and needs ``color``. When no group
        is given a new group with ``color`` is created first; if that fails
        the mark is created without a group.

        Raises:
            RangeError: If the range is empty or leaves the open unit
            ValueError: If no color can be determined for the mark
        """
        self._require_unit().validate(text_range)

        if group_id is not None:
            group = self.get_group(group_id)
            if group is not None:
                color = group.color
            elif color is None:
                raise ValueError(f"Unknown group {group_id} and no color given")
        else:
            if color is None:
                raise ValueError("A new mutashabih group needs a color")
            group = await self.create_group(color)
            if group is None:
                logger.warning("Group creation failed, creating mutashabih without group")
            group_id = group.id if group else None

        return await self.create_annotation(
            text_range,
            AnnotationType.MUTASHABIH,
            color=color,
            group_id=group_id,
            annotation_id=annotation_id,
        )

    def _checked_patch(self, current: Annotation, patch: AnnotationUpdate) -> AnnotationUpdate:
        """
        Validate a patch against the open unit.

        A patch that moves the annotation (range or unit) must land inside
        the open reading unit; its excerpt is recomputed from the new range.

        Raises:
            RangeError: If the moved range is invalid or outside the open unit
            ValueError: If the patch clears a required field
        """
        fields = patch.model_fields_set
        for name in sorted(REQUIRED_FIELDS & fields):
            if getattr(patch, name) is None:
                raise ValueError(f"Annotation field '{name}' cannot be cleared")
        if not fields & PLACEMENT_FIELDS:
            return patch

        unit = self._require_unit()
        hizb = patch.hizb if "hizb" in fields else current.hizb
        quarter = patch.quarter if "quarter" in fields else current.quarter
        if (hizb, quarter) != (unit.hizb, unit.quarter):
            raise RangeError(
                f"Annotation would move to hizb {hizb}, quarter {quarter} "
                f"but {unit} is open"
            )

        text_range = unit.validate(
            TextRange(
                start=patch.start if "start" in fields else current.start,
                end=patch.end if "end" in fields else current.end,
            )
        )
        changes = patch.model_dump(exclude_unset=True)
        changes.update(
            start=text_range.start,
            end=text_range.end,
            excerpt=unit.excerpt_for(text_range),
        )
        return AnnotationUpdate(**changes)

    async def update_annotation(
        self, annotation_id: str, patch: AnnotationUpdate
    ) -> Optional[Annotation]:
        """
        Apply a partial update and mirror it in the working set.

        Returns:
            The updated annotation, or None if it is unknown or the write failed

        Raises:
            RangeError: If the patch moves the range somewhere invalid
            ValueError: If the patch clears a required field
        """
        current = self.get_annotation(annotation_id)
        if current is None:
            logger.warning(f"Cannot update unknown annotation {annotation_id}")
            return None
        patch = self._checked_patch(current, patch)

        result = await self._call(
            f"Updating annotation {annotation_id}",
            self.annotations_service.update_annotation,
            annotation_id,
            patch,
        )
        if result is None:
            return None
        if result.changes == 0:
            return current

        changes = {name: getattr(patch, name) for name in patch.model_fields_set}
        if "excerpt" in changes:
            changes["excerpt"] = changes["excerpt"] or ""
        updated = current.model_copy(update=changes)
        self._store(updated)
        return updated

    async def delete_annotation(self, annotation_id: str) -> bool:
        """
        Delete an annotation; it leaves the working set only on success.

        Returns:
            True if the marks database no longer holds the annotation
        """
        result = await self._call(
            f"Deleting annotation {annotation_id}",
            self.annotations_service.delete_annotation,
            annotation_id,
        )
        if result is None:
            return False
        self.annotations = [a for a in self.annotations if a.id != annotation_id]
        return result.changes > 0

    def annotations_for_panel(self, tab: str = "all") -> list[Annotation]:
        """All annotations, optionally of one type, oldest first."""
        if tab not in PANEL_TABS:
            raise ValueError(f"Unknown annotations tab: {tab}")
        if tab == "all":
            return list(self.annotations)
        return [a for a in self.annotations if a.type.value == tab]

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def create_group(
        self, color: str, label: str | None = None
    ) -> Optional[AnnotationGroup]:
        created = await self._call(
            "Creating group",
            self.groups_service.create_group,
            GroupCreate(color=color, label=label),
        )
        if created is None:
            return None
        group = AnnotationGroup(
            id=created.id, color=color, label=label, created_at=created.created_at
        )
        self.groups.append(group)
        return group

    async def update_group(
        self, group_id: str, patch: GroupUpdate
    ) -> Optional[AnnotationGroup]:
        result = await self._call(
            f"Updating group {group_id}",
            self.groups_service.update_group,
            group_id,
            patch,
        )
        if result is None or result.changes == 0:
            return None

        changes = {name: getattr(patch, name) for name in patch.model_fields_set}
        if changes.get("color", "") is None:
            changes.pop("color")
        current = self.get_group(group_id)
        if current is None:
            await self.refresh_groups()
            return self.get_group(group_id)
        updated = current.model_copy(update=changes)
        self.groups = [updated if g.id == group_id else g for g in self.groups]
        return updated

    async def delete_group(self, group_id: str) -> bool:
        """
        Delete a group. Member annotations keep their color and group_id.
        """
        result = await self._call(
            f"Deleting group {group_id}", self.groups_service.delete_group, group_id
        )
        if result is None:
            return False
        self.groups = [g for g in self.groups if g.id != group_id]
        return result.changes > 0

    async def apply_group_color(self, group_id: str) -> Optional[int]:
        """
        Push a group's color onto all its members, then reload annotations.

        Returns:
            Number of recolored annotations, or None if the batch failed
        """
        result = await self._call(
            f"Applying color of group {group_id}",
            self.groups_service.apply_group_color_to_annotations,
            group_id,
        )
        if result is None:
            return None
        await self.refresh_annotations()
        return result.changes

    def group_summaries(self) -> list[GroupSummary]:
        """
        Mutashabih groups with a sample excerpt and member count.

        Group ids referenced by annotations but missing from the store are
        listed too, colored after their first member.
        """
        summaries: dict[str, GroupSummary] = {
            g.id: GroupSummary(id=g.id, color=g.color, label=g.label) for g in self.groups
        }
        for annotation in self.annotations:
            if annotation.type != AnnotationType.MUTASHABIH or not annotation.group_id:
                continue
            summary = summaries.get(annotation.group_id)
            if summary is None:
                summaries[annotation.group_id] = GroupSummary(
                    id=annotation.group_id,
                    color=annotation.color or FALLBACK_GROUP_COLOR,
                    sample=annotation.excerpt,
                    count=1,
                )
                continue
            summary.count += 1
            if not summary.sample and annotation.excerpt:
                summary.sample = annotation.excerpt
        return list(summaries.values())

    # ------------------------------------------------------------------
    # Rendering and commands
    # ------------------------------------------------------------------

    def render(self) -> list[RenderedRow]:
        """Styled segments for every row of the open unit."""
        return self._require_unit().render(self.annotations)

    def bind(self, dispatcher: CommandDispatcher) -> None:
        """Register this session as the handler of reader commands."""
        dispatcher.register(NavigateToReading, self._handle_navigate)
        dispatcher.register(OpenAnnotationsPanel, self._handle_open_panel)

    async def _handle_navigate(self, command: NavigateToReading) -> ReadingUnit:
        return await self.open_unit(
            command.hizb, command.quarter, scroll_to_row=command.row_id
        )

    def _handle_open_panel(self, command: OpenAnnotationsPanel) -> list[Annotation]:
        return self.annotations_for_panel(command.tab)
