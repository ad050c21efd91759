"""
SQLite foundation for the worksheet progress table.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from .config import DB_PATH


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or DB_PATH)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None):
    """Initialize the database with required tables."""
    path = db_path or DB_PATH
    Path(path).parent.mkdir(parents=True, exist_ok=True)

    with get_db(path) as conn:
        cursor = conn.cursor()

        # One row per (user, phase, worksheet); upserts are keyed on it
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS worksheet_progress (
                user_id TEXT NOT NULL,
                phase_number INTEGER NOT NULL,
                worksheet_id TEXT NOT NULL,
                data TEXT NOT NULL DEFAULT '{}',
                completed BOOLEAN DEFAULT FALSE,
                completed_at TIMESTAMP,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                PRIMARY KEY (user_id, phase_number, worksheet_id)
            )
        ''')

        cursor.execute(
            'CREATE INDEX IF NOT EXISTS idx_worksheet_progress_user_phase '
            'ON worksheet_progress(user_id, phase_number)'
        )

        conn.commit()


def health_check(db_path: Optional[str] = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return 'worksheet_progress' in table_names
    except Exception:
        return False
