"""
Shared fixtures: a small seeded verse database and a temporary marks database.
"""

import os
import sqlite3
import tempfile

import pytest

from quran_marks.services.database_service import DatabaseService

# (id, sura_no, aya_no, aya_text, hizb, quarter, page)
SEED_VERSES = [
    (1, 1, 1, "بسم الله الرحمن الرحيم", 1, 1, 1),
    (2, 1, 2, "الحمد لله رب العالمين", 1, 1, 1),
    (3, 1, 3, "الرحمن الرحيم", 1, 1, 1),
    (4, 1, 4, "مالك يوم الدين", 1, 1, 1),
    (10, 2, 1, "الم", 1, 2, 2),
    (11, 2, 2, "ذلك الكتاب لا ريب فيه", 1, 2, 2),
    (12, 2, 3, "هدى للمتقين", 1, 2, 2),
]


def seed_verse_database(db_path: str, verses=SEED_VERSES) -> None:
    conn = sqlite3.connect(db_path)
    conn.execute("""
        CREATE TABLE warshquran (
            id INTEGER PRIMARY KEY,
            jozz INTEGER,
            page INTEGER,
            sura_no INTEGER,
            sura_name_en TEXT,
            sura_name_ar TEXT,
            line_start INTEGER,
            line_end INTEGER,
            aya_no INTEGER,
            aya_text TEXT,
            hizb INTEGER,
            quarter INTEGER
        )
    """)
    conn.executemany(
        """
        INSERT INTO warshquran (id, sura_no, aya_no, aya_text, hizb, quarter, page, jozz)
        VALUES (?, ?, ?, ?, ?, ?, ?, 1)
        """,
        verses,
    )
    conn.commit()
    conn.close()


def _remove_db(db_path: str) -> None:
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture
def temp_db_path():
    """Create temporary database path"""
    with tempfile.NamedTemporaryFile(mode="w", delete=False, suffix=".db") as f:
        db_path = f.name

    yield db_path

    # Cleanup
    _remove_db(db_path)


@pytest.fixture
def quran_db_path():
    """Temporary verse database seeded with two reading units"""
    with tempfile.NamedTemporaryFile(mode="w", delete=False, suffix=".db") as f:
        db_path = f.name
    os.unlink(db_path)
    seed_verse_database(db_path)

    yield db_path

    _remove_db(db_path)


@pytest.fixture
def database(quran_db_path, temp_db_path):
    """DatabaseService over the seeded verses and an empty marks database"""
    return DatabaseService(quran_db_path=quran_db_path, marks_db_path=temp_db_path)
