"""
Tests for ReadingSession.

Tests cover:
- Opening reading units and loading marks
- Persistence success gating in-memory state
- Partial load failures and excerpt backfill isolation
- Mutashabih groups and bulk recolor
- Reader commands
"""

import time
from unittest.mock import Mock

import pytest

from quran_marks.models.annotations import (
    Annotation,
    AnnotationCreate,
    AnnotationType,
    AnnotationUpdate,
    Boundary,
    GroupCreate,
    GroupUpdate,
    TextRange,
)
from quran_marks.services.commands import (
    CommandDispatcher,
    NavigateToReading,
    OpenAnnotationsPanel,
)
from quran_marks.services.reading_session import FALLBACK_GROUP_COLOR, ReadingSession
from quran_marks.services.reading_unit import (
    DegenerateRangeError,
    RangeError,
    RowNotInUnitError,
)

# sqlite cannot create a file inside a directory that does not exist
UNREACHABLE_DB_PATH = "/nonexistent-dir/marks.db"


def b(row_id, offset):
    return Boundary(row_id=row_id, offset=offset)


def r(start, end):
    return TextRange(start=b(*start), end=b(*end))


@pytest.fixture
def session(database):
    return ReadingSession.from_database(database)


class TestOpenUnit:
    @pytest.mark.asyncio
    async def test_loads_rows_and_marks(self, session, database):
        database.groups.create_group(GroupCreate(color="#aaaaaa"))

        unit = await session.open_unit(1, 1)

        assert [row.id for row in unit.rows] == [1, 2, 3, 4]
        assert session.marks_loaded is True
        assert len(session.groups) == 1

    @pytest.mark.asyncio
    async def test_invalid_unit(self, session):
        with pytest.raises(ValueError):
            await session.open_unit(61, 1)
        with pytest.raises(ValueError):
            await session.open_unit(1, 5)

    @pytest.mark.asyncio
    async def test_scroll_target_in_unit(self, session):
        await session.open_unit(1, 2, scroll_to_row=11)

        assert session.consume_pending_scroll() == 11
        assert session.consume_pending_scroll() is None

    @pytest.mark.asyncio
    async def test_scroll_target_outside_unit_is_dropped(self, session):
        await session.open_unit(1, 1, scroll_to_row=11)

        assert session.consume_pending_scroll() is None

    @pytest.mark.asyncio
    async def test_verse_store_failure_opens_empty_unit(self, session, database):
        database.verses.get_rows = Mock(side_effect=RuntimeError("disk"))

        unit = await session.open_unit(1, 1)

        assert len(unit) == 0
        assert session.render() == []

    @pytest.mark.asyncio
    async def test_partial_load_failure(self, session, database):
        """A failing groups fetch does not block annotations from loading"""
        await session.open_unit(1, 1)
        await session.create_annotation(r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00")
        database.groups.list_groups = Mock(side_effect=RuntimeError("boom"))

        fresh = ReadingSession.from_database(database)
        await fresh.load_marks()

        assert len(fresh.annotations) == 1
        assert fresh.groups == []
        assert fresh.marks_loaded is True

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_state(self, session, database):
        await session.open_unit(1, 1)
        await session.create_annotation(r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00")
        database.annotations.db_path = UNREACHABLE_DB_PATH

        await session.refresh_annotations()

        assert len(session.annotations) == 1

    @pytest.mark.asyncio
    async def test_failed_load_keeps_previous_state(self, session, database):
        await session.open_unit(1, 1)
        await session.create_mutashabih(r((1, 0), (1, 3)), "#fde68a")
        database.annotations.db_path = UNREACHABLE_DB_PATH
        database.groups.db_path = UNREACHABLE_DB_PATH

        await session.load_marks()

        assert len(session.annotations) == 1
        assert len(session.groups) == 1


class TestBackfillExcerpts:
    def _add_without_excerpt(self, database, hizb, quarter, start, end):
        return database.annotations.create_annotation(
            AnnotationCreate(
                type=AnnotationType.MISTAKE,
                hizb=hizb,
                quarter=quarter,
                start=b(*start),
                end=b(*end),
                color="#f00",
            )
        ).id

    @pytest.mark.asyncio
    async def test_fills_missing_excerpts_of_open_unit(self, session, database):
        own = self._add_without_excerpt(database, 1, 1, (1, 0), (2, 5))
        other = self._add_without_excerpt(database, 1, 2, (10, 0), (10, 3))

        await session.open_unit(1, 1)

        assert database.annotations.get_annotation(own).excerpt == "بسم الله الرحمن الرحيم الحمد"
        assert session.get_annotation(own).excerpt == "بسم الله الرحمن الرحيم الحمد"
        assert database.annotations.get_annotation(other).excerpt == ""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, session, database):
        failing = self._add_without_excerpt(database, 1, 1, (1, 0), (1, 3))
        working = self._add_without_excerpt(database, 1, 1, (3, 0), (3, 6))
        original_update = database.annotations.update_annotation

        def flaky_update(annotation_id, patch):
            if annotation_id == failing:
                raise RuntimeError("locked")
            return original_update(annotation_id, patch)

        database.annotations.update_annotation = flaky_update

        await session.open_unit(1, 1)

        assert session.get_annotation(failing).excerpt == ""
        assert session.get_annotation(working).excerpt == "الرحمن"
        assert database.annotations.get_annotation(working).excerpt == "الرحمن"

    @pytest.mark.asyncio
    async def test_out_of_unit_rows_are_skipped(self, session, database):
        stray = self._add_without_excerpt(database, 1, 1, (1, 0), (99, 1))

        await session.open_unit(1, 1)

        assert session.get_annotation(stray).excerpt == ""


class TestSelection:
    @pytest.mark.asyncio
    async def test_preview_normalizes(self, session):
        await session.open_unit(1, 1)

        preview = session.preview_selection(b(2, 5), b(1, 9))

        assert preview.range == r((1, 9), (2, 5))
        assert preview.text == "الرحمن الرحيم الحمد"

    @pytest.mark.asyncio
    async def test_empty_or_unresolved_selection_is_ignored(self, session):
        await session.open_unit(1, 1)

        assert session.preview_selection(b(1, 2), b(1, 2)) is None
        assert session.preview_selection(None, b(1, 2)) is None
        assert session.preview_selection(b(10, 0), b(1, 2)) is None

    @pytest.mark.asyncio
    async def test_preview_positions(self, session):
        await session.open_unit(1, 1)
        # the unvocalized first verse gets a decorative Basmala line before it
        first = session.unit.text_map.row_start(1)

        preview = session.preview_positions(first + 4, first)

        assert first > 0
        assert preview.text == "بسم "
        assert preview.range == r((1, 0), (1, 4))
        assert session.preview_positions(0, first + 4) is None

    def test_preview_without_unit(self, session):
        assert session.preview_selection(b(1, 0), b(1, 1)) is None
        assert session.preview_positions(0, 1) is None


class TestCreateAnnotation:
    @pytest.mark.asyncio
    async def test_persists_then_shows(self, session, database):
        await session.open_unit(1, 1)

        annotation = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.NOTE, note="test"
        )

        assert annotation.excerpt == "بسم"
        assert session.annotations == [annotation]
        assert database.annotations.get_annotation(annotation.id) == annotation

    @pytest.mark.asyncio
    async def test_persistence_failure_hides_annotation(self, session, database):
        await session.open_unit(1, 1)
        database.annotations.create_annotation = Mock(return_value=None)

        result = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        assert result is None
        assert session.annotations == []

    @pytest.mark.asyncio
    async def test_persistence_error_hides_annotation(self, session, database):
        await session.open_unit(1, 1)
        database.annotations.create_annotation = Mock(side_effect=RuntimeError("io"))

        result = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        assert result is None
        assert session.annotations == []

    @pytest.mark.asyncio
    async def test_persistence_timeout_hides_annotation(self, session, database):
        await session.open_unit(1, 1)
        session.timeout = 0.05

        def slow_create(payload):
            time.sleep(0.3)

        database.annotations.create_annotation = slow_create

        result = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        assert result is None
        assert session.annotations == []

    @pytest.mark.asyncio
    async def test_offsets_past_row_end_are_clamped(self, session, database):
        await session.open_unit(1, 1)

        annotation = await session.create_annotation(
            r((3, 5), (3, 99)), AnnotationType.MISTAKE, color="#f00"
        )

        assert annotation.end == b(3, 13)
        assert annotation.excerpt == "ن الرحيم"
        assert database.annotations.get_annotation(annotation.id).end == b(3, 13)

    @pytest.mark.asyncio
    async def test_range_past_row_end_is_empty(self, session, database):
        await session.open_unit(1, 1)

        with pytest.raises(DegenerateRangeError):
            await session.create_annotation(
                r((3, 20), (3, 30)), AnnotationType.MISTAKE, color="#f00"
            )

        assert database.annotations.list_annotations() == []

    @pytest.mark.asyncio
    async def test_degenerate_range_rejected(self, session, database):
        await session.open_unit(1, 1)

        with pytest.raises(DegenerateRangeError):
            await session.create_annotation(r((1, 2), (1, 2)), AnnotationType.MISTAKE)

        assert database.annotations.list_annotations() == []

    @pytest.mark.asyncio
    async def test_row_outside_unit_rejected(self, session):
        await session.open_unit(1, 1)

        with pytest.raises(RowNotInUnitError):
            await session.create_annotation(r((1, 0), (10, 1)), AnnotationType.MISTAKE)

    @pytest.mark.asyncio
    async def test_note_requires_text(self, session):
        await session.open_unit(1, 1)

        with pytest.raises(ValueError):
            await session.create_annotation(r((1, 0), (1, 3)), AnnotationType.NOTE, note="  ")

    @pytest.mark.asyncio
    async def test_requires_open_unit(self, session):
        with pytest.raises(RuntimeError):
            await session.create_annotation(r((1, 0), (1, 3)), AnnotationType.MISTAKE)

    @pytest.mark.asyncio
    async def test_render_reflects_new_annotation(self, session):
        await session.open_unit(1, 1)
        await session.create_annotation(r((1, 0), (1, 3)), AnnotationType.NOTE, note="test")

        first_row = session.render()[0]

        assert [s.text for s in first_row.segments] == ["بسم", " الله الرحمن الرحيم"]
        assert first_row.segments[0].note_tooltip == "test"


class TestUpdateDeleteAnnotation:
    @pytest.mark.asyncio
    async def test_update_mirrors_in_memory(self, session):
        await session.open_unit(1, 1)
        created = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        updated = await session.update_annotation(created.id, AnnotationUpdate(color="#0f0"))

        assert updated.color == "#0f0"
        assert session.get_annotation(created.id).color == "#0f0"

    @pytest.mark.asyncio
    async def test_failed_update_leaves_memory(self, session, database):
        await session.open_unit(1, 1)
        created = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )
        database.annotations.update_annotation = Mock(return_value=None)

        assert await session.update_annotation(created.id, AnnotationUpdate(color="#0f0")) is None
        assert session.get_annotation(created.id).color == "#f00"

    @pytest.mark.asyncio
    async def test_moving_range_recomputes_excerpt(self, session, database):
        await session.open_unit(1, 1)
        created = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        updated = await session.update_annotation(
            created.id, AnnotationUpdate(start=b(2, 0), end=b(2, 5))
        )

        assert updated.excerpt == "الحمد"
        assert database.annotations.get_annotation(created.id).excerpt == "الحمد"
        assert database.annotations.get_annotation(created.id).start == b(2, 0)

    @pytest.mark.asyncio
    async def test_moved_offsets_are_clamped(self, session, database):
        await session.open_unit(1, 1)
        created = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        updated = await session.update_annotation(
            created.id, AnnotationUpdate(start=b(3, 5), end=b(3, 99))
        )

        assert updated.end == b(3, 13)
        assert database.annotations.get_annotation(created.id).end == b(3, 13)

    @pytest.mark.asyncio
    async def test_moving_to_another_unit_is_rejected(self, session, database):
        await session.open_unit(1, 1)
        created = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        with pytest.raises(RangeError):
            await session.update_annotation(created.id, AnnotationUpdate(quarter=2))

        assert database.annotations.get_annotation(created.id).quarter == 1
        assert session.get_annotation(created.id).quarter == 1

    @pytest.mark.asyncio
    async def test_clearing_required_field_is_rejected(self, session, database):
        await session.open_unit(1, 1)
        created = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        for patch in (AnnotationUpdate(hizb=None), AnnotationUpdate(start=None)):
            with pytest.raises(ValueError):
                await session.update_annotation(created.id, patch)

        assert database.annotations.get_annotation(created.id).hizb == 1

    @pytest.mark.asyncio
    async def test_update_unknown_annotation(self, session):
        await session.open_unit(1, 1)

        assert await session.update_annotation("nope", AnnotationUpdate(color="#0f0")) is None

    @pytest.mark.asyncio
    async def test_delete(self, session, database):
        await session.open_unit(1, 1)
        created = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )

        assert await session.delete_annotation(created.id) is True
        assert session.annotations == []
        assert database.annotations.get_annotation(created.id) is None

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_annotation_visible(self, session, database):
        await session.open_unit(1, 1)
        created = await session.create_annotation(
            r((1, 0), (1, 3)), AnnotationType.MISTAKE, color="#f00"
        )
        database.annotations.delete_annotation = Mock(return_value=None)

        assert await session.delete_annotation(created.id) is False
        assert session.get_annotation(created.id) is not None


class TestMutashabihGroups:
    @pytest.mark.asyncio
    async def test_new_mark_starts_group(self, session, database):
        await session.open_unit(1, 1)

        annotation = await session.create_mutashabih(r((1, 0), (1, 3)), "#fde68a")

        assert annotation.group_id is not None
        group = database.groups.get_group(annotation.group_id)
        assert group.color == "#fde68a"
        assert session.get_group(annotation.group_id) is not None

    @pytest.mark.asyncio
    async def test_joining_group_takes_its_color(self, session):
        await session.open_unit(1, 1)
        group = await session.create_group("#93c5fd", label="بقرة")

        annotation = await session.create_mutashabih(
            r((2, 0), (2, 5)), "#ffffff", group_id=group.id
        )

        assert annotation.group_id == group.id
        assert annotation.color == "#93c5fd"

    @pytest.mark.asyncio
    async def test_group_failure_creates_ungrouped_mark(self, session, database):
        await session.open_unit(1, 1)
        database.groups.create_group = Mock(return_value=None)

        annotation = await session.create_mutashabih(r((1, 0), (1, 3)), "#fde68a")

        assert annotation is not None
        assert annotation.group_id is None
        assert annotation.color == "#fde68a"

    @pytest.mark.asyncio
    async def test_caller_id_is_kept(self, session, database):
        await session.open_unit(1, 1)

        annotation = await session.create_mutashabih(
            r((1, 0), (1, 3)), "#fde68a", annotation_id="mark-1"
        )

        assert annotation.id == "mark-1"
        assert database.annotations.get_annotation("mark-1").group_id == annotation.group_id

    @pytest.mark.asyncio
    async def test_unknown_group_needs_color(self, session, database):
        await session.open_unit(1, 1)

        with pytest.raises(ValueError):
            await session.create_mutashabih(r((1, 0), (1, 3)), None, group_id="gone")

        kept = await session.create_mutashabih(r((1, 0), (1, 3)), "#cccccc", group_id="gone")
        assert kept.group_id == "gone"
        assert kept.color == "#cccccc"
        assert len(database.annotations.list_annotations()) == 1

    @pytest.mark.asyncio
    async def test_new_group_needs_color(self, session):
        await session.open_unit(1, 1)

        with pytest.raises(ValueError):
            await session.create_mutashabih(r((1, 0), (1, 3)), None)

        assert session.groups == []

    @pytest.mark.asyncio
    async def test_apply_group_color(self, session):
        await session.open_unit(1, 1)
        first = await session.create_mutashabih(r((1, 0), (1, 3)), "#aaaaaa")
        second = await session.create_mutashabih(
            r((3, 0), (3, 6)), "#aaaaaa", group_id=first.group_id
        )
        other = await session.create_mutashabih(r((4, 0), (4, 4)), "#cccccc")

        await session.update_group(first.group_id, GroupUpdate(color="#123456"))
        changes = await session.apply_group_color(first.group_id)

        assert changes == 2
        assert session.get_annotation(first.id).color == "#123456"
        assert session.get_annotation(second.id).color == "#123456"
        assert session.get_annotation(other.id).color == "#cccccc"
        assert session.render()[0].segments[0].background_color == "#123456"

    @pytest.mark.asyncio
    async def test_update_group_ignores_none_color(self, session):
        group = await session.create_group("#aaaaaa")

        updated = await session.update_group(group.id, GroupUpdate(color=None, label="x"))

        assert updated.color == "#aaaaaa"
        assert updated.label == "x"

    @pytest.mark.asyncio
    async def test_delete_group_keeps_members(self, session):
        await session.open_unit(1, 1)
        annotation = await session.create_mutashabih(r((1, 0), (1, 3)), "#fde68a")

        assert await session.delete_group(annotation.group_id) is True
        await session.refresh_annotations()

        member = session.get_annotation(annotation.id)
        assert session.groups == []
        assert member.group_id == annotation.group_id
        assert session.render()[0].segments[0].background_color == "#fde68a"

    @pytest.mark.asyncio
    async def test_group_summaries(self, session):
        await session.open_unit(1, 1)
        first = await session.create_mutashabih(r((1, 0), (1, 3)), "#aaaaaa")
        await session.create_mutashabih(r((2, 0), (2, 5)), "#aaaaaa", group_id=first.group_id)
        empty = await session.create_group("#bbbbbb")
        dangling = await session.create_mutashabih(r((3, 0), (3, 6)), "#cccccc")
        await session.delete_group(dangling.group_id)

        summaries = {s.id: s for s in session.group_summaries()}

        assert summaries[first.group_id].count == 2
        assert summaries[first.group_id].sample == "بسم"
        assert summaries[empty.id].count == 0
        assert summaries[dangling.group_id].color == "#cccccc"
        assert summaries[dangling.group_id].count == 1

    def test_summary_fallback_color(self, session):
        session.annotations = [
            Annotation(
                id="a",
                type=AnnotationType.MUTASHABIH,
                hizb=1,
                quarter=1,
                start=b(1, 0),
                end=b(1, 1),
                group_id="gone",
                created_at=1,
            )
        ]

        [summary] = session.group_summaries()

        assert summary.color == FALLBACK_GROUP_COLOR


class TestCommands:
    @pytest.mark.asyncio
    async def test_navigate(self, session):
        dispatcher = CommandDispatcher()
        session.bind(dispatcher)

        unit = await dispatcher.dispatch(NavigateToReading(1, 2, row_id=12))

        assert (unit.hizb, unit.quarter) == (1, 2)
        assert session.consume_pending_scroll() == 12

    @pytest.mark.asyncio
    async def test_open_panel(self, session):
        dispatcher = CommandDispatcher()
        session.bind(dispatcher)
        await session.open_unit(1, 1)
        note = await session.create_annotation(r((1, 0), (1, 3)), AnnotationType.NOTE, note="x")
        await session.create_annotation(r((2, 0), (2, 3)), AnnotationType.MISTAKE, color="#f00")

        notes = await dispatcher.dispatch(OpenAnnotationsPanel(tab="note"))
        everything = await dispatcher.dispatch(OpenAnnotationsPanel())

        assert notes == [note]
        assert len(everything) == 2

        with pytest.raises(ValueError):
            await dispatcher.dispatch(OpenAnnotationsPanel(tab="bookmarks"))
