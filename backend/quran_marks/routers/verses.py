from fastapi import APIRouter, HTTPException

from ..models.verses import QuarterPreview, ReadingUnitRef, VerseRow
from ..services.commands import next_unit, previous_unit
from ..services.database_service import db_service
from ..services.verse_store_service import HIZB_COUNT, is_valid_unit

router = APIRouter(prefix="/verses", tags=["verses"])


def validate_unit_or_400(hizb: int, quarter: int) -> None:
    """
    Reject (hizb, quarter) pairs outside the 60 x 4 grid.

    Raises:
        HTTPException: 400 if the reading unit does not exist
    """
    if not is_valid_unit(hizb, quarter):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid reading unit: hizb {hizb}, quarter {quarter}",
        )


@router.get("/{hizb}/quarters", response_model=list[QuarterPreview])
async def get_quarter_previews(hizb: int) -> list[QuarterPreview]:
    """Preview text of the four quarters of a hizb."""
    if not 1 <= hizb <= HIZB_COUNT:
        raise HTTPException(status_code=400, detail=f"Invalid hizb: {hizb}")
    return db_service.verses.get_quarter_previews(hizb)


@router.get("/{hizb}/{quarter}", response_model=list[VerseRow])
async def get_unit_rows(hizb: int, quarter: int) -> list[VerseRow]:
    """Verse rows of a reading unit, in display order."""
    validate_unit_or_400(hizb, quarter)
    return db_service.verses.get_rows(hizb, quarter)


@router.get("/{hizb}/{quarter}/neighbors")
async def get_neighbor_units(hizb: int, quarter: int) -> dict[str, ReadingUnitRef | None]:
    """The previous and next reading units, null at either end."""
    validate_unit_or_400(hizb, quarter)
    return {
        "previous": previous_unit(hizb, quarter),
        "next": next_unit(hizb, quarter),
    }
