"""
Reading Unit Module

A reading unit is the ordered list of verse rows of one (hizb, quarter).
It is the coordinate space for annotation ranges: this module turns
selection endpoints into boundaries, orders them into ranges, extracts
the text a range covers and projects overlapping annotations onto
per-row render segments.

Offsets count Python string characters (code points) everywhere:
boundaries, slicing, excerpts and the rendered-text map.
"""

import logging
from bisect import bisect_right
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..models.annotations import (
    DEFAULT_NOTE_TOOLTIP,
    EXCERPT_MAX_CHARS,
    PREVIEW_MAX_CHARS,
    Annotation,
    AnnotationType,
    Boundary,
    RenderedRow,
    RenderSegment,
    TextRange,
)
from ..models.verses import VerseRow

logger = logging.getLogger(__name__)

BASMALA = "بِسْمِ ٱللَّهِ ٱلرَّحْمَٰنِ ٱلرَّحِيمِ"

# Rows are rendered as continuous prose joined by one space
ROW_SEPARATOR = " "

# Sura 9 (At-Tawba) opens without a Basmala
SURA_WITHOUT_BASMALA = 9


class RangeError(ValueError):
    """Raised when two boundaries cannot form an annotation range."""

    pass


class DegenerateRangeError(RangeError):
    """Raised when both boundaries of a range are the same position."""

    def __init__(self, boundary: Boundary):
        super().__init__(
            f"Empty range at row {boundary.row_id}, offset {boundary.offset}"
        )
        self.boundary = boundary


class RowNotInUnitError(RangeError):
    """Raised when a boundary points at a row outside the loaded unit."""

    def __init__(self, row_id: int):
        super().__init__(f"Row {row_id} is not part of the loaded reading unit")
        self.row_id = row_id


def needs_basmala(row: VerseRow) -> bool:
    """Whether a decorative Basmala line is shown before this row."""
    is_sura_start = row.aya_no == 1 and row.sura_no != SURA_WITHOUT_BASMALA
    return is_sura_start and not row.aya_text.strip().startswith("بِسْم")


def clamp_offset(row_id: int, offset: int, length: int) -> int:
    """
    Clamp an in-row offset to [0, length].

    A caret placed after the trailing separator of a row reports an
    offset one past the row text; it is pulled back onto the last
    character boundary.
    """
    if offset < 0 or offset > length:
        logger.debug(f"Clamping offset {offset} to [0, {length}] in row {row_id}")
    return min(max(offset, 0), length)


@dataclass
class _PlacedSpan:
    """A run of rendered characters: either a verse row or a decoration."""

    start: int
    end: int
    row_id: int | None
    text_length: int


class RenderedTextMap:
    """
    Maps rendered character positions back to (row, offset) boundaries.

    The map is built from the same rows, in the same order, as the
    rendered prose: each row's text followed by a separator (except the
    last), with an optional Basmala block before each sura start. Any
    position that falls inside a row or its trailing separator resolves
    to that row; positions inside a decoration resolve to nothing.
    """

    def __init__(self, rows: Sequence[VerseRow], with_basmala: bool = True):
        self._spans: list[_PlacedSpan] = []
        self._row_starts: dict[int, int] = {}
        parts: list[str] = []
        position = 0

        for index, row in enumerate(rows):
            if with_basmala and needs_basmala(row):
                block = BASMALA + "\n"
                self._spans.append(
                    _PlacedSpan(position, position + len(block), None, len(block))
                )
                parts.append(block)
                position += len(block)

            is_last = index == len(rows) - 1
            rendered = row.aya_text if is_last else row.aya_text + ROW_SEPARATOR
            self._spans.append(
                _PlacedSpan(position, position + len(rendered), row.id, len(row.aya_text))
            )
            self._row_starts[row.id] = position
            parts.append(rendered)
            position += len(rendered)

        self.text = "".join(parts)
        self._span_starts = [span.start for span in self._spans]

    def __len__(self) -> int:
        return len(self.text)

    def row_start(self, row_id: int) -> int | None:
        """Rendered position of the first character of a row."""
        return self._row_starts.get(row_id)

    def resolve(self, index: int) -> Boundary | None:
        """
        Resolve a rendered caret position to a boundary.

        Args:
            index: Caret position in the rendered text, 0..len(text)

        Returns:
            The boundary, or None when the position is outside every row
        """
        if index < 0 or index > len(self.text) or not self._spans:
            return None

        span = self._spans[bisect_right(self._span_starts, index) - 1]
        if span.row_id is None:
            return None
        offset = clamp_offset(span.row_id, index - span.start, span.text_length)
        return Boundary(row_id=span.row_id, offset=offset)


class ReadingUnit:
    """
    The rows of one (hizb, quarter) and the range operations over them.

    Row order is the position in ``rows``; row ids are never assumed to
    be contiguous or sorted.
    """

    def __init__(self, hizb: int, quarter: int, rows: Sequence[VerseRow]):
        self.hizb = hizb
        self.quarter = quarter
        self.rows = list(rows)
        self._index_by_id = {row.id: i for i, row in enumerate(self.rows)}
        self._text_map: RenderedTextMap | None = None

    def __len__(self) -> int:
        return len(self.rows)

    def __repr__(self) -> str:
        return f"ReadingUnit(hizb={self.hizb}, quarter={self.quarter}, rows={len(self.rows)})"

    # ------------------------------------------------------------------
    # Row lookup
    # ------------------------------------------------------------------

    def contains(self, row_id: int) -> bool:
        return row_id in self._index_by_id

    def index_of(self, row_id: int) -> int:
        try:
            return self._index_by_id[row_id]
        except KeyError:
            raise RowNotInUnitError(row_id) from None

    def row_text(self, row_id: int) -> str:
        return self.rows[self.index_of(row_id)].aya_text

    def owns(self, annotation: Annotation) -> bool:
        """Whether the annotation was made in this reading unit."""
        return annotation.hizb == self.hizb and annotation.quarter == self.quarter

    # ------------------------------------------------------------------
    # Boundary resolution
    # ------------------------------------------------------------------

    @property
    def text_map(self) -> RenderedTextMap:
        if self._text_map is None:
            self._text_map = RenderedTextMap(self.rows)
        return self._text_map

    def resolve_position(self, index: int) -> Boundary | None:
        """Resolve a caret position in the rendered unit text."""
        return self.text_map.resolve(index)

    def boundary_in_row(
        self,
        row_id: int,
        segment_lengths: Sequence[int],
        segment_index: int,
        offset: int,
    ) -> Boundary | None:
        """
        Resolve a caret inside one of a row's rendered sub-segments.

        A row that already carries annotations is drawn as several styled
        segments. The row offset is the length of all segments before the
        caret's segment plus the offset inside it. ``segment_index`` equal
        to ``len(segment_lengths)`` addresses the trailing separator.

        Returns:
            The boundary, or None when the row is not in this unit or the
            segment does not exist
        """
        if not self.contains(row_id):
            return None
        if segment_index < 0 or segment_index > len(segment_lengths):
            return None

        row_offset = sum(segment_lengths[:segment_index]) + offset
        length = len(self.row_text(row_id))
        return Boundary(row_id=row_id, offset=clamp_offset(row_id, row_offset, length))

    # ------------------------------------------------------------------
    # Ranges
    # ------------------------------------------------------------------

    def _position(self, boundary: Boundary) -> tuple[int, int]:
        return (self.index_of(boundary.row_id), boundary.offset)

    def clamp(self, boundary: Boundary) -> Boundary:
        """
        Pull a boundary's offset back inside its row.

        Raises:
            RowNotInUnitError: If the row is not part of the unit
        """
        length = len(self.row_text(boundary.row_id))
        offset = clamp_offset(boundary.row_id, boundary.offset, length)
        if offset == boundary.offset:
            return boundary
        return Boundary(row_id=boundary.row_id, offset=offset)

    def normalize(self, a: Boundary, b: Boundary) -> TextRange:
        """
        Order two selection endpoints into a range.

        Offsets past the end of a row are clamped first. Rows are compared
        by their position in the unit, then offsets. The result does not
        depend on argument order.

        Raises:
            RowNotInUnitError: If either row is not part of the unit
            DegenerateRangeError: If both endpoints are the same position
        """
        a = self.clamp(a)
        b = self.clamp(b)
        pa = self._position(a)
        pb = self._position(b)
        if pa == pb:
            raise DegenerateRangeError(a)
        if pa < pb:
            return TextRange(start=a, end=b)
        return TextRange(start=b, end=a)

    def validate(self, text_range: TextRange) -> TextRange:
        """
        Check that a range is annotatable in this unit.

        Returns:
            The range with both offsets clamped to their rows

        Raises:
            RangeError: If the range is empty, reversed or leaves the unit
        """
        start_boundary = self.clamp(text_range.start)
        end_boundary = self.clamp(text_range.end)
        start = self._position(start_boundary)
        end = self._position(end_boundary)
        if start == end:
            raise DegenerateRangeError(start_boundary)
        if start > end:
            raise RangeError("Range start comes after its end")
        return TextRange(start=start_boundary, end=end_boundary)

    def extract_text(self, text_range: TextRange) -> str:
        """
        Reconstruct the text a range covers.

        Pieces from consecutive rows are joined with a single space.

        Raises:
            RowNotInUnitError: If either row is not part of the unit
        """
        start_index = self.index_of(text_range.start.row_id)
        end_index = self.index_of(text_range.end.row_id)

        parts: list[str] = []
        for index in range(start_index, end_index + 1):
            text = self.rows[index].aya_text
            if index == start_index and index == end_index:
                parts.append(text[text_range.start.offset : text_range.end.offset])
            elif index == start_index:
                parts.append(text[text_range.start.offset :])
            elif index == end_index:
                parts.append(text[: text_range.end.offset])
            else:
                parts.append(text)
        return ROW_SEPARATOR.join(parts)

    def preview_text(self, text_range: TextRange) -> str:
        return self.extract_text(text_range)[:PREVIEW_MAX_CHARS]

    def excerpt_for(self, text_range: TextRange) -> str:
        return self.extract_text(text_range)[:EXCERPT_MAX_CHARS]

    # ------------------------------------------------------------------
    # Render projection
    # ------------------------------------------------------------------

    def clip(self, annotation: Annotation, row_id: int) -> tuple[int, int] | None:
        """
        The part of a row an annotation covers, in row-local offsets.

        Returns:
            (start, end) with start < end, or None when the row is not covered
        """
        if not (
            self.contains(row_id)
            and self.contains(annotation.start.row_id)
            and self.contains(annotation.end.row_id)
        ):
            return None

        row_index = self.index_of(row_id)
        start_index = self.index_of(annotation.start.row_id)
        end_index = self.index_of(annotation.end.row_id)
        if row_index < start_index or row_index > end_index:
            return None

        length = len(self.rows[row_index].aya_text)
        start = annotation.start.offset if row_index == start_index else 0
        end = annotation.end.offset if row_index == end_index else length
        start = min(max(start, 0), length)
        end = min(max(end, 0), length)
        if start >= end:
            return None
        return (start, end)

    def segment_row(
        self, row_id: int, annotations: Iterable[Annotation]
    ) -> list[RenderSegment]:
        """
        Split a row into styled segments from the annotations covering it.

        Segment boundaries occur only where some annotation's coverage
        starts or ends, so the covering set is constant inside each
        segment. The segments concatenate back to the row text.
        """
        text = self.row_text(row_id)
        covering: list[tuple[int, int, Annotation]] = []
        for annotation in annotations:
            clipped = self.clip(annotation, row_id)
            if clipped is not None:
                covering.append((clipped[0], clipped[1], annotation))

        cuts = {0, len(text)}
        for start, end, _ in covering:
            cuts.add(start)
            cuts.add(end)
        points = sorted(cuts)

        segments: list[RenderSegment] = []
        for s, e in zip(points, points[1:]):
            segment_text = text[s:e]
            if not segment_text:
                continue
            active = [a for start, end, a in covering if start < e and end > s]
            segments.append(_styled_segment(segment_text, s, e, active))
        return segments

    def render(self, annotations: Iterable[Annotation]) -> list[RenderedRow]:
        """Render every row of the unit with this unit's annotations."""
        own = [a for a in annotations if self.owns(a)]
        return [
            RenderedRow(
                row_id=row.id,
                text=row.aya_text,
                segments=self.segment_row(row.id, own),
            )
            for row in self.rows
        ]


def _styled_segment(
    text: str, start: int, end: int, active: Sequence[Annotation]
) -> RenderSegment:
    """
    Resolve one segment's style.

    Annotations are applied oldest first (created_at, then id): the most
    recent colored mistake sets the text color and the most recent
    colored mutashabih sets the background. Any note underlines, and the
    oldest note supplies the tooltip.
    """
    color = None
    background_color = None
    note_tooltip = None
    underline = False

    for annotation in sorted(active, key=lambda a: a.sort_key):
        if annotation.type == AnnotationType.MISTAKE and annotation.color:
            color = annotation.color
        elif annotation.type == AnnotationType.MUTASHABIH and annotation.color:
            background_color = annotation.color
        elif annotation.type == AnnotationType.NOTE and not underline:
            underline = True
            note_tooltip = annotation.note or DEFAULT_NOTE_TOOLTIP

    return RenderSegment(
        text=text,
        start=start,
        end=end,
        color=color,
        background_color=background_color,
        underline=underline,
        note_tooltip=note_tooltip,
    )
