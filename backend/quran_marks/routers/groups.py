from fastapi import APIRouter, HTTPException

from ..models.annotations import (
    AnnotationGroup,
    ChangesResult,
    GroupCreate,
    GroupSummary,
    GroupUpdate,
)
from ..services.database_service import db_service
from ..services.reading_session import ReadingSession

router = APIRouter(prefix="/groups", tags=["groups"])


def get_group_or_404(group_id: str) -> AnnotationGroup:
    """
    Look up a group by id, or raise HTTPException(404) if not found.
    """
    group = db_service.groups.get_group(group_id)
    if group is None:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


@router.get("/", response_model=list[AnnotationGroup])
async def list_groups() -> list[AnnotationGroup]:
    groups = db_service.groups.list_groups()
    if groups is None:
        raise HTTPException(status_code=500, detail="Failed to load groups")
    return groups


@router.post("/", response_model=AnnotationGroup)
async def create_group(payload: GroupCreate) -> AnnotationGroup:
    created = db_service.groups.create_group(payload)
    if created is None:
        raise HTTPException(status_code=500, detail="Failed to create group")
    return get_group_or_404(created.id)


@router.get("/summaries", response_model=list[GroupSummary])
async def get_group_summaries() -> list[GroupSummary]:
    """Groups with a sample excerpt and member count, for the group picker."""
    session = ReadingSession.from_database(db_service)
    await session.load_marks()
    return session.group_summaries()


@router.patch("/{group_id}", response_model=AnnotationGroup)
async def update_group(group_id: str, patch: GroupUpdate) -> AnnotationGroup:
    get_group_or_404(group_id)
    result = db_service.groups.update_group(group_id, patch)
    if result is None:
        raise HTTPException(status_code=500, detail="Failed to update group")
    return get_group_or_404(group_id)


@router.delete("/{group_id}")
async def delete_group(group_id: str) -> dict[str, str]:
    """Delete a group. Its annotations keep their color and group_id."""
    result = db_service.groups.delete_group(group_id)
    if result is None:
        raise HTTPException(status_code=500, detail="Failed to delete group")
    if result.changes == 0:
        raise HTTPException(status_code=404, detail="Group not found")
    return {"message": "Group deleted successfully"}


@router.post("/{group_id}/apply-color", response_model=ChangesResult)
async def apply_group_color(group_id: str) -> ChangesResult:
    """Recolor every mutashabih annotation of the group with the group's color."""
    get_group_or_404(group_id)
    result = db_service.groups.apply_group_color_to_annotations(group_id)
    if result is None:
        raise HTTPException(status_code=500, detail="Failed to apply group color")
    return result
