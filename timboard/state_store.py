from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from timboard.models import PitchingIdea, Snapshot, Task
from timboard.snapshots import SnapshotStore, TombstoneSet


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateStore:
    """sqlite persistence for tasks, snapshots, tombstones and run history.

    ``lock`` guards read-modify-write sequences over the task collection so
    a sync merge and a local edit never interleave.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS sync_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_at TEXT NOT NULL,
            trigger TEXT NOT NULL,
            status TEXT NOT NULL,
            message TEXT,
            duration_ms INTEGER NOT NULL,
            created INTEGER NOT NULL DEFAULT 0,
            updated INTEGER NOT NULL DEFAULT 0,
            dropped INTEGER NOT NULL DEFAULT 0,
            drifted INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS audit_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id INTEGER,
            created_at TEXT NOT NULL,
            external_id TEXT NOT NULL,
            action TEXT NOT NULL,
            details_json TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            position INTEGER NOT NULL,
            payload_json TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS pitching_ideas (
            id TEXT PRIMARY KEY,
            position INTEGER NOT NULL,
            payload_json TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS event_snapshots (
            external_id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            start_date TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS tombstones (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            external_id TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
        with self.lock:
            with self._connect() as conn:
                conn.executescript(schema_sql)

    def start_sync_run(self, *, trigger: str, message: str = "running") -> int:
        with self.lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO sync_runs(run_at, trigger, status, message, duration_ms)
                    VALUES (?, ?, 'running', ?, 0)
                    """,
                    (_utc_now(), trigger, message),
                )
                conn.commit()
                return int(cursor.lastrowid)

    def finish_sync_run(
        self,
        *,
        run_id: int,
        status: str,
        message: str,
        duration_ms: int,
        created: int = 0,
        updated: int = 0,
        dropped: int = 0,
        drifted: int = 0,
    ) -> None:
        with self.lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    UPDATE sync_runs
                    SET status = ?, message = ?, duration_ms = ?,
                        created = ?, updated = ?, dropped = ?, drifted = ?
                    WHERE id = ?
                    """,
                    (
                        str(status),
                        str(message),
                        int(duration_ms),
                        int(created),
                        int(updated),
                        int(dropped),
                        int(drifted),
                        int(run_id),
                    ),
                )
                conn.commit()

    def recent_sync_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT id, run_at, trigger, status, message, duration_ms, created, updated, dropped, drifted
                    FROM sync_runs
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (max(1, limit),),
                ).fetchall()
        return [dict(row) for row in rows]

    def record_audit_event(
        self,
        *,
        external_id: str,
        action: str,
        details: dict[str, Any],
        run_id: int | None = None,
    ) -> None:
        with self.lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO audit_events(run_id, created_at, external_id, action, details_json)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (run_id, _utc_now(), external_id, action, json.dumps(details, ensure_ascii=False)),
                )
                conn.commit()

    def recent_audit_events(self, limit: int = 100, run_id: int | None = None) -> list[dict[str, Any]]:
        query = """
            SELECT id, run_id, created_at, external_id, action, details_json
            FROM audit_events
        """
        params: tuple[Any, ...]
        if run_id is None:
            query += " ORDER BY id DESC LIMIT ?"
            params = (max(1, limit),)
        else:
            query += " WHERE run_id = ? ORDER BY id DESC LIMIT ?"
            params = (int(run_id), max(1, limit))
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        output: list[dict[str, Any]] = []
        for row in rows:
            item = dict(row)
            item["details"] = json.loads(item.pop("details_json") or "{}")
            output.append(item)
        return output

    def load_tasks(self) -> list[Task]:
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute("SELECT payload_json FROM tasks ORDER BY position ASC").fetchall()
        return [Task.from_dict(json.loads(row["payload_json"])) for row in rows]

    @staticmethod
    def _write_tasks(conn: sqlite3.Connection, tasks: Iterable[Task]) -> None:
        conn.execute("DELETE FROM tasks")
        conn.executemany(
            "INSERT INTO tasks(id, position, payload_json) VALUES (?, ?, ?)",
            [
                (task.id, position, json.dumps(task.to_dict(), ensure_ascii=False))
                for position, task in enumerate(tasks)
            ],
        )

    @staticmethod
    def _write_pitching_ideas(conn: sqlite3.Connection, ideas: Iterable[PitchingIdea]) -> None:
        conn.execute("DELETE FROM pitching_ideas")
        conn.executemany(
            "INSERT INTO pitching_ideas(id, position, payload_json) VALUES (?, ?, ?)",
            [
                (idea.id, position, json.dumps(idea.to_dict(), ensure_ascii=False))
                for position, idea in enumerate(ideas)
            ],
        )

    @staticmethod
    def _write_snapshots(conn: sqlite3.Connection, snapshots: Mapping[str, Snapshot]) -> None:
        now = _utc_now()
        conn.execute("DELETE FROM event_snapshots")
        conn.executemany(
            """
            INSERT INTO event_snapshots(external_id, title, description, start_date, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (external_id, snap.title, snap.description, snap.start_date, now)
                for external_id, snap in snapshots.items()
            ],
        )

    def save_tasks(self, tasks: Iterable[Task]) -> None:
        with self.lock:
            with self._connect() as conn:
                self._write_tasks(conn, tasks)
                conn.commit()

    def load_pitching_ideas(self) -> list[PitchingIdea]:
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute("SELECT payload_json FROM pitching_ideas ORDER BY position ASC").fetchall()
        return [PitchingIdea.from_dict(json.loads(row["payload_json"])) for row in rows]

    def save_pitching_ideas(self, ideas: Iterable[PitchingIdea]) -> None:
        with self.lock:
            with self._connect() as conn:
                self._write_pitching_ideas(conn, ideas)
                conn.commit()

    def commit_pitching_move(self, tasks: Iterable[Task], ideas: Iterable[PitchingIdea]) -> None:
        """Persist a task leaving the board and the pitching list together."""
        with self.lock:
            with self._connect() as conn:
                self._write_tasks(conn, tasks)
                self._write_pitching_ideas(conn, ideas)
                conn.commit()

    def load_snapshots(self) -> SnapshotStore:
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT external_id, title, description, start_date FROM event_snapshots"
                ).fetchall()
        return SnapshotStore(
            {
                row["external_id"]: Snapshot(
                    title=row["title"],
                    description=row["description"],
                    start_date=row["start_date"],
                )
                for row in rows
            }
        )

    def commit_sync(self, tasks: Iterable[Task], snapshots: Mapping[str, Snapshot]) -> None:
        """Persist the merged collection and the rebuilt snapshots together."""
        with self.lock:
            with self._connect() as conn:
                self._write_tasks(conn, tasks)
                self._write_snapshots(conn, snapshots)
                conn.commit()

    def record_tombstone(self, external_id: str) -> bool:
        with self.lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO tombstones(external_id, created_at) VALUES (?, ?)",
                    (str(external_id), _utc_now()),
                )
                conn.commit()
                return cursor.rowcount > 0

    def load_tombstones(self) -> TombstoneSet:
        with self.lock:
            with self._connect() as conn:
                rows = conn.execute("SELECT external_id FROM tombstones ORDER BY seq ASC").fetchall()
        return TombstoneSet(row["external_id"] for row in rows)

    def reset_local_state(self) -> None:
        with self.lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM tasks")
                conn.execute("DELETE FROM event_snapshots")
                conn.execute("DELETE FROM tombstones")
                conn.commit()

    def set_meta(self, key: str, value: str) -> None:
        with self.lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO app_meta(key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (str(key), str(value), _utc_now()),
                )
                conn.commit()

    def get_meta(self, key: str) -> str | None:
        with self.lock:
            with self._connect() as conn:
                row = conn.execute("SELECT value FROM app_meta WHERE key = ?", (str(key),)).fetchone()
        if row is None:
            return None
        return str(row["value"])
