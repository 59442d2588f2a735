"""
Verse Type Models

Rows of the read-only warshquran table and derived views.
"""

from pydantic import BaseModel


class VerseRow(BaseModel):
    """A verse row from the warshquran table"""

    id: int
    sura_no: int
    aya_no: int
    aya_text: str
    hizb: int
    quarter: int
    sura_name_ar: str | None = None
    sura_name_en: str | None = None
    page: str | None = None
    jozz: int | None = None
    line_start: int | None = None
    line_end: int | None = None


class QuarterPreview(BaseModel):
    quarter: int
    preview: str


class ReadingUnitRef(BaseModel):
    """A (hizb, quarter) pair"""

    hizb: int
    quarter: int
