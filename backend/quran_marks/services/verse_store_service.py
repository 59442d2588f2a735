"""
Verse Store Service Module

Read access to the bundled Quran text (Warsh narration). Every reading
unit is a (hizb, quarter) pair whose rows, ordered by id, form the
coordinate space for annotation boundaries.
"""

import logging
import sqlite3

from ..models.verses import QuarterPreview, VerseRow
from .base_database_service import BaseDatabaseService

# Configure logger for this module
logger = logging.getLogger(__name__)

HIZB_COUNT = 60
QUARTERS_PER_HIZB = 4


def is_valid_unit(hizb: int, quarter: int) -> bool:
    """Check that (hizb, quarter) names an existing reading unit."""
    return 1 <= hizb <= HIZB_COUNT and 1 <= quarter <= QUARTERS_PER_HIZB


class VerseStoreService(BaseDatabaseService):
    """
    Service class for reading verse rows from the warshquran table.

    The table ships with the application and is never written to.
    """

    def __init__(self, db_path: str = "data/quran.db"):
        """
        Initialize the verse store.

        Args:
            db_path (str): Path to the SQLite database holding the warshquran table
        """
        super().__init__(db_path)

    def _row_to_verse(self, row: sqlite3.Row) -> VerseRow:
        keys = row.keys()
        return VerseRow(
            id=row["id"],
            sura_no=row["sura_no"],
            aya_no=row["aya_no"],
            aya_text=row["aya_text"],
            hizb=row["hizb"],
            quarter=row["quarter"],
            sura_name_ar=row["sura_name_ar"] if "sura_name_ar" in keys else None,
            sura_name_en=row["sura_name_en"] if "sura_name_en" in keys else None,
            page=str(row["page"]) if "page" in keys and row["page"] is not None else None,
            jozz=row["jozz"] if "jozz" in keys else None,
            line_start=row["line_start"] if "line_start" in keys else None,
            line_end=row["line_end"] if "line_end" in keys else None,
        )

    def get_rows(self, hizb: int, quarter: int) -> list[VerseRow]:
        """
        Return the verse rows of a reading unit in display order.

        Args:
            hizb (int): Hizb number (1-60)
            quarter (int): Quarter number (1-4)

        Returns:
            list[VerseRow]: Rows ordered by id, or an empty list on error
        """
        rows = self.execute_query(
            "SELECT * FROM warshquran WHERE hizb = ? AND quarter = ? ORDER BY id",
            (hizb, quarter),
            fetch_all=True,
        )
        if rows is None:
            logger.error(f"Failed to fetch verses for hizb {hizb}, quarter {quarter}")
            return []
        return [self._row_to_verse(row) for row in rows]

    def get_quarter_previews(self, hizb: int) -> list[QuarterPreview]:
        """
        Return the four quarters of a hizb with the joined text of each.

        Args:
            hizb (int): Hizb number (1-60)

        Returns:
            list[QuarterPreview]: One preview per quarter, in order
        """
        previews = []
        for quarter in range(1, QUARTERS_PER_HIZB + 1):
            text = " ".join(row.aya_text for row in self.get_rows(hizb, quarter))
            previews.append(QuarterPreview(quarter=quarter, preview=text))
        return previews
