"""
Database module for the cached channel lineup.

Uses SQLite for simplicity and no external dependencies.
The last lineup that refreshed successfully is stored here so a restart can
serve ``/lineup.json`` right away, before the next scheduled refresh.
"""

import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .config import settings
from .models import ChannelDescriptor, SourceKind

DB_PATH = settings.db_path


@dataclass
class LineupInfo:
    """When the cached lineup was written and how big it is."""

    channel_count: int
    updated_at: float | None


@contextmanager
def get_db(db_path: Path | None = None):
    """Context manager for database connections."""
    conn = sqlite3.connect(str(db_path or DB_PATH))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: Path | None = None) -> None:
    """Initialize database schema."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)

    with get_db(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS channels (
                id TEXT PRIMARY KEY,
                display_number TEXT NOT NULL,
                display_name TEXT NOT NULL,
                source_kind TEXT NOT NULL,
                source_locator TEXT DEFAULT '',
                updated_at REAL NOT NULL
            )
        """
        )


def save_lineup(channels: list[ChannelDescriptor], db_path: Path | None = None) -> None:
    """Replace the cached lineup with ``channels`` in one transaction."""
    updated_at = time.time()

    with get_db(db_path) as conn:
        conn.execute("DELETE FROM channels")
        conn.executemany(
            """
            INSERT INTO channels (id, display_number, display_name, source_kind,
                                  source_locator, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            [
                (
                    c.id,
                    c.display_number,
                    c.display_name,
                    c.source_kind.value,
                    c.source_locator,
                    updated_at,
                )
                for c in channels
            ],
        )


def load_lineup(db_path: Path | None = None) -> list[ChannelDescriptor]:
    """Get the cached lineup, ordered by display number."""
    with get_db(db_path) as conn:
        rows = conn.execute(
            """
            SELECT id, display_number, display_name, source_kind, source_locator
            FROM channels
            ORDER BY CAST(display_number AS REAL), display_number
        """
        ).fetchall()

    return [
        ChannelDescriptor(
            id=row["id"],
            display_number=row["display_number"],
            display_name=row["display_name"],
            source_kind=SourceKind(row["source_kind"]),
            source_locator=row["source_locator"] or "",
        )
        for row in rows
    ]


def lineup_info(db_path: Path | None = None) -> LineupInfo:
    with get_db(db_path) as conn:
        row = conn.execute("SELECT COUNT(*) AS n, MAX(updated_at) AS ts FROM channels").fetchone()
    return LineupInfo(channel_count=row["n"], updated_at=row["ts"])
