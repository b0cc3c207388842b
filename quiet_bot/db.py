from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from .time_utils import TimeOfDay, format_time, parse_time
from .windows import Window


class Database:
    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS quiet_windows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subject_id TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_quiet_windows_subject ON quiet_windows (subject_id, start_time)"
        )
        self.conn.commit()

    def list_windows(self, subject_id: str) -> list[Window]:
        cur = self.conn.cursor()
        rows = cur.execute(
            "SELECT id, subject_id, start_time, end_time FROM quiet_windows "
            "WHERE subject_id = ? ORDER BY start_time ASC, id ASC",
            (subject_id,),
        ).fetchall()
        return [_row_to_window(r) for r in rows]

    def insert_window(self, subject_id: str, start: TimeOfDay, end: TimeOfDay) -> Window:
        now = _utc_now_iso()
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO quiet_windows (subject_id, start_time, end_time, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (subject_id, format_time(start), format_time(end), now, now),
        )
        self.conn.commit()
        return Window(id=int(cur.lastrowid), subject_id=subject_id, start=start, end=end)

    def update_window(self, subject_id: str, window_id: int, start: TimeOfDay, end: TimeOfDay) -> Window | None:
        cur = self.conn.cursor()
        cur.execute(
            "UPDATE quiet_windows SET start_time = ?, end_time = ?, updated_at = ? "
            "WHERE id = ? AND subject_id = ?",
            (format_time(start), format_time(end), _utc_now_iso(), window_id, subject_id),
        )
        changed = cur.rowcount > 0
        self.conn.commit()
        if not changed:
            return None
        return Window(id=window_id, subject_id=subject_id, start=start, end=end)

    def delete_window(self, subject_id: str, window_id: int) -> bool:
        cur = self.conn.cursor()
        cur.execute("DELETE FROM quiet_windows WHERE id = ? AND subject_id = ?", (window_id, subject_id))
        changed = cur.rowcount > 0
        self.conn.commit()
        return changed


def _row_to_window(r: sqlite3.Row) -> Window:
    return Window(
        id=int(r["id"]),
        subject_id=str(r["subject_id"]),
        start=parse_time(str(r["start_time"])),
        end=parse_time(str(r["end_time"])),
    )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
