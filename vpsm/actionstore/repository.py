"""SQLite-backed action repository.

When a user starts or stops a server the CLI records the action locally, so
an interrupted process (Ctrl+C, crash) can resume polling on the next run.
The database lives at ``<config dir>/vpsm.db`` unless configured otherwise.
"""

import logging
import sqlite3
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

from vpsm.actionstore.record import ActionRecord
from vpsm.config import default_db_path
from vpsm.domain.errors import InvalidTransitionError, NotFoundError
from vpsm.domain.types import ACTION_RUNNING, ACTION_STATUSES, ACTION_SUCCESS

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS actions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    action_id     TEXT    NOT NULL DEFAULT '',
    provider      TEXT    NOT NULL,
    server_id     TEXT    NOT NULL,
    server_name   TEXT    NOT NULL DEFAULT '',
    command       TEXT    NOT NULL DEFAULT '',
    target_status TEXT    NOT NULL DEFAULT '',
    status        TEXT    NOT NULL DEFAULT 'running',
    progress      INTEGER NOT NULL DEFAULT 0,
    error_message TEXT    NOT NULL DEFAULT '',
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_actions_status ON actions(status);
"""

_COLUMNS = (
    "id, action_id, provider, server_id, server_name, command, "
    "target_status, status, progress, error_message, created_at, updated_at"
)

# Fixed-width UTC timestamps so lexical order in SQL matches time order.
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _format_ts(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).strftime(_TS_FORMAT)


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _now() -> datetime:
    return datetime.now(UTC)


def _from_row(row: sqlite3.Row) -> ActionRecord:
    return ActionRecord(
        id=row["id"],
        action_id=row["action_id"],
        provider=row["provider"],
        server_id=row["server_id"],
        server_name=row["server_name"],
        command=row["command"],
        target_status=row["target_status"],
        status=row["status"],
        progress=row["progress"],
        error_message=row["error_message"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


class ActionRepository:
    """CRUD store for :class:`ActionRecord`, safe to share across threads and tasks.

    A single connection serialises writers behind a lock; WAL mode and a busy
    timeout let several CLI processes open the same file.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.path), timeout=10.0, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.debug(f"Action store opened at {self.path}")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        with self._lock:
            self._conn.close()

    # ── Writes ─────────────────────────────────────────────────────

    def save(self, record: ActionRecord) -> ActionRecord:
        """Insert (``record.id is None``) or update a record in place.

        Stamps ``updated_at`` on every call and ``created_at`` on insert.

        Raises:
            NotFoundError: the update targets an unknown ID.
            InvalidTransitionError: a terminal record would change status.
            ValueError: unknown status value.
        """
        if record.status not in ACTION_STATUSES:
            raise ValueError(f"invalid action status {record.status!r}")
        if record.status == ACTION_SUCCESS:
            record.progress = 100
        record.progress = max(0, min(100, int(record.progress)))

        now = _now()
        with self._lock, self._conn:
            if record.id is None:
                created_at = record.created_at or now
                cur = self._conn.execute(
                    """INSERT INTO actions (action_id, provider, server_id, server_name, command,
                                            target_status, status, progress, error_message, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record.action_id,
                        record.provider,
                        record.server_id,
                        record.server_name,
                        record.command,
                        record.target_status,
                        record.status,
                        record.progress,
                        record.error_message,
                        _format_ts(created_at),
                        _format_ts(now),
                    ),
                )
                record.id = cur.lastrowid
                record.created_at = created_at
                record.updated_at = now
                return record

            row = self._conn.execute("SELECT status FROM actions WHERE id = ?", (record.id,)).fetchone()
            if row is None:
                raise NotFoundError(f"action with ID {record.id} not found")
            current = row["status"]
            if current != ACTION_RUNNING and record.status != current:
                raise InvalidTransitionError(f"action {record.id} is already {current!r}; cannot become {record.status!r}")

            self._conn.execute(
                """UPDATE actions SET action_id=?, provider=?, server_id=?, server_name=?, command=?,
                                      target_status=?, status=?, progress=?, error_message=?, updated_at=?
                   WHERE id=?""",
                (
                    record.action_id,
                    record.provider,
                    record.server_id,
                    record.server_name,
                    record.command,
                    record.target_status,
                    record.status,
                    record.progress,
                    record.error_message,
                    _format_ts(now),
                    record.id,
                ),
            )
            record.updated_at = now
            return record

    def delete_older_than(self, age: timedelta) -> int:
        """Remove terminal records last updated more than *age* ago.

        Running records are never removed. Returns the number deleted.
        """
        cutoff = _format_ts(_now() - age)
        with self._lock, self._conn:
            cur = self._conn.execute(
                "DELETE FROM actions WHERE status != ? AND updated_at < ?",
                (ACTION_RUNNING, cutoff),
            )
            return cur.rowcount

    # ── Reads ──────────────────────────────────────────────────────

    def get(self, record_id: int) -> ActionRecord | None:
        with self._lock:
            row = self._conn.execute(f"SELECT {_COLUMNS} FROM actions WHERE id = ?", (record_id,)).fetchone()
        return _from_row(row) if row else None

    def list_pending(self) -> list[ActionRecord]:
        """All running records, newest first."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM actions WHERE status = ? ORDER BY created_at DESC, id DESC",
                (ACTION_RUNNING,),
            ).fetchall()
        return [_from_row(r) for r in rows]

    def list_recent(self, n: int) -> list[ActionRecord]:
        """The *n* most recently created records regardless of status, newest first."""
        if n <= 0:
            return []
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM actions ORDER BY created_at DESC, id DESC LIMIT ?",
                (n,),
            ).fetchall()
        return [_from_row(r) for r in rows]


def open_repository(path: str | Path | None = None) -> ActionRepository:
    """Open (creating if needed) the action store at *path* or the default location."""
    path = Path(path) if path else default_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    return ActionRepository(path)
