from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..models.annotations import (
    Annotation,
    AnnotationFilter,
    AnnotationType,
    AnnotationUpdate,
    Boundary,
    RenderedRow,
    SelectionPreview,
)
from ..services.database_service import db_service
from ..services.reading_session import ReadingSession
from ..services.reading_unit import RangeError
from .verses import validate_unit_or_400

router = APIRouter(prefix="/annotations", tags=["annotations"])


class AnnotationRequest(BaseModel):
    """A new annotation over a selection; start/end may come in either order"""

    id: Optional[str] = None
    type: AnnotationType
    hizb: int
    quarter: int
    start: Boundary
    end: Boundary
    color: Optional[str] = None
    note: Optional[str] = None
    group_id: Optional[str] = None


class SelectionRequest(BaseModel):
    """
    A live selection, given either as boundaries or as caret positions
    in the rendered text of the unit.
    """

    hizb: int
    quarter: int
    anchor: Optional[Boundary] = None
    focus: Optional[Boundary] = None
    anchor_index: Optional[int] = None
    focus_index: Optional[int] = None


class RenderedUnitResponse(BaseModel):
    hizb: int
    quarter: int
    rows: list[RenderedRow]


async def open_session(hizb: int, quarter: int) -> ReadingSession:
    """Validate the unit and open a reading session on it."""
    validate_unit_or_400(hizb, quarter)
    session = ReadingSession.from_database(db_service)
    await session.open_unit(hizb, quarter)
    return session


@router.post("/", response_model=Annotation)
async def create_annotation(payload: AnnotationRequest) -> Annotation:
    """
    Create an annotation from a selection in a reading unit.

    Mutashabih marks without a group_id start a new group with their color;
    with a known group_id they take the group's color.
    """
    session = await open_session(payload.hizb, payload.quarter)

    try:
        text_range = session.unit.normalize(payload.start, payload.end)
        if payload.type == AnnotationType.MUTASHABIH:
            annotation = await session.create_mutashabih(
                text_range,
                payload.color,
                group_id=payload.group_id,
                annotation_id=payload.id,
            )
        else:
            annotation = await session.create_annotation(
                text_range,
                payload.type,
                color=payload.color,
                note=payload.note,
                annotation_id=payload.id,
            )
    except RangeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if annotation is None:
        raise HTTPException(status_code=500, detail="Failed to create annotation")
    return annotation


@router.get("/", response_model=list[Annotation])
async def list_annotations(
    type: Optional[AnnotationType] = None,
    hizb: Optional[int] = None,
    quarter: Optional[int] = None,
    group_id: Optional[str] = None,
) -> list[Annotation]:
    """List annotations, oldest first, with optional equality filters."""
    filters = AnnotationFilter(type=type, hizb=hizb, quarter=quarter, group_id=group_id)
    annotations = db_service.annotations.list_annotations(filters)
    if annotations is None:
        raise HTTPException(status_code=500, detail="Failed to load annotations")
    return annotations


@router.get("/id/{annotation_id}", response_model=Annotation)
async def get_annotation(annotation_id: str) -> Annotation:
    annotation = db_service.annotations.get_annotation(annotation_id)
    if annotation is None:
        raise HTTPException(status_code=404, detail="Annotation not found")
    return annotation


@router.patch("/{annotation_id}", response_model=Annotation)
async def update_annotation(annotation_id: str, patch: AnnotationUpdate) -> Annotation:
    """
    Update an annotation.

    A patch touching hizb, quarter, start or end is checked against the
    target reading unit, and the excerpt is recomputed from the new range.
    """
    current = db_service.annotations.get_annotation(annotation_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Annotation not found")

    hizb = patch.hizb if patch.hizb is not None else current.hizb
    quarter = patch.quarter if patch.quarter is not None else current.quarter
    session = await open_session(hizb, quarter)

    try:
        updated = await session.update_annotation(annotation_id, patch)
    except RangeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if updated is None:
        raise HTTPException(status_code=500, detail="Failed to update annotation")
    return updated


@router.delete("/{annotation_id}")
async def delete_annotation(annotation_id: str) -> dict[str, str]:
    result = db_service.annotations.delete_annotation(annotation_id)
    if result is None:
        raise HTTPException(status_code=500, detail="Failed to delete annotation")
    if result.changes == 0:
        raise HTTPException(status_code=404, detail="Annotation not found")
    return {"message": "Annotation deleted successfully"}


@router.post("/selection", response_model=Optional[SelectionPreview])
async def preview_selection(payload: SelectionRequest) -> Optional[SelectionPreview]:
    """
    Normalize a selection and return the text it covers (up to 120 characters).

    Returns null when the selection is empty or falls outside every verse.
    """
    session = await open_session(payload.hizb, payload.quarter)
    if payload.anchor_index is not None and payload.focus_index is not None:
        return session.preview_positions(payload.anchor_index, payload.focus_index)
    return session.preview_selection(payload.anchor, payload.focus)


@router.get("/render/{hizb}/{quarter}", response_model=RenderedUnitResponse)
async def render_unit(hizb: int, quarter: int) -> RenderedUnitResponse:
    """
    Styled segments for every verse of a reading unit.

    Opening the unit also backfills missing excerpts of its annotations.
    """
    session = await open_session(hizb, quarter)
    return RenderedUnitResponse(hizb=hizb, quarter=quarter, rows=session.render())
