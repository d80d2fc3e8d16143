"""
Session scan history and scan records (sqlite).

History is best-effort: when no DB path is configured, or sqlite fails, reads
return an empty history and writes are logged and dropped. The pipeline never
sees a storage error.
"""
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from app.clients import HISTORY_MAX_ENTRIES, HISTORY_READ_LIMIT
from eatwise.models import DailyHabit, ScanHistoryEntry

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("HISTORY_DB_PATH", "storage/scans.db")
DETECTED_TEXT_MAX_CHARS = 2000


def history_enabled() -> bool:
    return bool(DB_PATH)


def init_db():
    """Initialize database schema."""
    if not history_enabled():
        logger.info("[DB] HISTORY_DB_PATH empty, history disabled")
        return

    directory = os.path.dirname(DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with get_db() as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS scan_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                product_name TEXT NOT NULL,
                user_intent TEXT,
                health_score REAL,
                timestamp TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_history_session
            ON scan_history(session_id, id)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS scans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT,
                input_type TEXT NOT NULL CHECK(input_type IN ('barcode', 'image')),
                barcode TEXT,
                product_name TEXT,
                detected_text TEXT,
                health_score REAL,
                user_intent TEXT,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS habits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                ingredient TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_habits_session
            ON habits(session_id, timestamp)
        """)


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_recent_scan_history(session_id: str, limit: int = HISTORY_READ_LIMIT) -> List[ScanHistoryEntry]:
    """Most recent scans for a session, newest first. Empty on any storage problem."""
    if not history_enabled() or not session_id:
        return []
    try:
        with get_db() as conn:
            rows = conn.execute("""
                SELECT product_name, user_intent, health_score, timestamp
                FROM scan_history
                WHERE session_id = ?
                ORDER BY id DESC
                LIMIT ?
            """, (session_id, limit)).fetchall()
    except sqlite3.Error as e:
        logger.warning(f"[DB] History read failed for session {session_id}: {e}")
        return []
    return [
        ScanHistoryEntry(
            product_name=row["product_name"],
            user_intent=row["user_intent"],
            health_score=row["health_score"],
            timestamp=row["timestamp"],
        )
        for row in rows
    ]


def append_scan_history(session_id: str, entry: ScanHistoryEntry, max_entries: int = HISTORY_MAX_ENTRIES):
    """Append one entry and trim the session to its newest ``max_entries``."""
    if not history_enabled():
        return
    with get_db() as conn:
        conn.execute("""
            INSERT INTO scan_history (session_id, product_name, user_intent, health_score, timestamp)
            VALUES (?, ?, ?, ?, ?)
        """, (session_id, entry.product_name, entry.user_intent, entry.health_score, entry.timestamp))
        conn.execute("""
            DELETE FROM scan_history
            WHERE session_id = ? AND id NOT IN (
                SELECT id FROM scan_history WHERE session_id = ? ORDER BY id DESC LIMIT ?
            )
        """, (session_id, session_id, max_entries))


def save_scan_record(
    input_type: str,
    session_id: Optional[str] = None,
    barcode: Optional[str] = None,
    product_name: Optional[str] = None,
    detected_text: Optional[str] = None,
    health_score: Optional[float] = None,
    user_intent: Optional[str] = None,
) -> Optional[int]:
    """Insert a scan record. Returns its id, or None when storage is disabled."""
    if not history_enabled():
        return None
    now = datetime.now(timezone.utc).isoformat()
    with get_db() as conn:
        cursor = conn.execute("""
            INSERT INTO scans (session_id, input_type, barcode, product_name, detected_text,
                               health_score, user_intent, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            session_id,
            input_type,
            barcode,
            product_name,
            (detected_text or "")[:DETECTED_TEXT_MAX_CHARS] or None,
            health_score,
            user_intent,
            now,
        ))
        return cursor.lastrowid


def record_habits(session_id: str, ingredients: List[str], timestamp: Optional[str] = None):
    """Log one habit row per scanned ingredient, lowercased."""
    if not history_enabled() or not session_id:
        return
    now = timestamp or datetime.now(timezone.utc).isoformat()
    rows = [(session_id, i.strip().lower(), now) for i in ingredients if i.strip()]
    if not rows:
        return
    with get_db() as conn:
        conn.executemany("""
            INSERT INTO habits (session_id, ingredient, timestamp)
            VALUES (?, ?, ?)
        """, rows)


def get_daily_habits(session_id: str, day: Optional[str] = None) -> List[DailyHabit]:
    """
    Ingredient counts for one UTC day (YYYY-MM-DD, default today), in order of
    first appearance. Empty on any storage problem.
    """
    if not history_enabled() or not session_id:
        return []
    day = day or datetime.now(timezone.utc).date().isoformat()
    try:
        with get_db() as conn:
            rows = conn.execute("""
                SELECT ingredient, COUNT(*) AS count
                FROM habits
                WHERE session_id = ? AND substr(timestamp, 1, 10) = ?
                GROUP BY ingredient
                ORDER BY MIN(id)
            """, (session_id, day)).fetchall()
    except sqlite3.Error as e:
        logger.warning(f"[DB] Habit read failed for session {session_id}: {e}")
        return []
    return [DailyHabit(ingredient=row["ingredient"], count=row["count"]) for row in rows]
