"""
Annotation Type Models

Pydantic models for Quran reading annotations and mutashabih groups.
Ranges are anchored to verse rows with (row_id, character offset) pairs
for both start and end boundaries.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Truncation limits for text spanned by a range
PREVIEW_MAX_CHARS = 120
EXCERPT_MAX_CHARS = 200

DEFAULT_NOTE_TOOLTIP = "ملاحظة"


class AnnotationType(str, Enum):
    """Valid annotation types"""

    NOTE = "note"  # underline + comment
    MISTAKE = "mistake"  # text color
    MUTASHABIH = "mutashabih"  # background color, optional group


# ============================================
# Coordinates
# ============================================


class Boundary(BaseModel):
    """A position inside a reading unit: verse row + character offset"""

    model_config = ConfigDict(frozen=True)

    row_id: int
    offset: int = Field(ge=0)


class TextRange(BaseModel):
    """An ordered (start, end) pair of boundaries"""

    model_config = ConfigDict(frozen=True)

    start: Boundary
    end: Boundary


# ============================================
# Database Record Models
# ============================================


class Annotation(BaseModel):
    """An annotation as stored in the annotations table"""

    id: str
    type: AnnotationType
    hizb: int
    quarter: int
    start: Boundary
    end: Boundary
    color: str | None = None
    note: str | None = None
    group_id: str | None = None
    excerpt: str = ""
    created_at: int  # milliseconds since epoch

    @property
    def range(self) -> TextRange:
        return TextRange(start=self.start, end=self.end)

    @property
    def sort_key(self) -> tuple[int, str]:
        """Creation order with the id as tie-break"""
        return (self.created_at, self.id)


class AnnotationGroup(BaseModel):
    """A named color bucket for mutashabih annotations"""

    id: str
    color: str
    label: str | None = None
    created_at: int


class CreatedRecord(BaseModel):
    id: str
    created_at: int


class ChangesResult(BaseModel):
    changes: int


# ============================================
# Request Models
# ============================================


class AnnotationCreate(BaseModel):
    """Payload for persisting a new annotation"""

    id: str | None = None
    type: AnnotationType
    hizb: int
    quarter: int
    start: Boundary
    end: Boundary
    color: str | None = None
    note: str | None = None
    group_id: str | None = None
    excerpt: str | None = None


class AnnotationUpdate(BaseModel):
    """
    Partial annotation update.
    Only fields explicitly set are written.
    """

    type: AnnotationType | None = None
    hizb: int | None = None
    quarter: int | None = None
    start: Boundary | None = None
    end: Boundary | None = None
    color: str | None = None
    note: str | None = None
    group_id: str | None = None
    excerpt: str | None = None


class AnnotationFilter(BaseModel):
    type: AnnotationType | None = None
    hizb: int | None = None
    quarter: int | None = None
    group_id: str | None = None


class GroupCreate(BaseModel):
    id: str | None = None
    color: str
    label: str | None = None


class GroupUpdate(BaseModel):
    color: str | None = None
    label: str | None = None


# ============================================
# Render Projection
# ============================================


class RenderSegment(BaseModel):
    """A run of row text sharing one resolved style"""

    text: str
    start: int
    end: int
    color: str | None = None
    background_color: str | None = None
    underline: bool = False
    note_tooltip: str | None = None


class RenderedRow(BaseModel):
    row_id: int
    text: str
    segments: list[RenderSegment]


class SelectionPreview(BaseModel):
    """A normalized selection and the (truncated) text it covers"""

    range: TextRange
    text: str


class GroupSummary(BaseModel):
    """Mutashabih group as offered when picking a group for a new mark"""

    id: str
    color: str
    label: str | None = None
    sample: str = ""
    count: int = 0
