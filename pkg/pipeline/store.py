"""
Pipeline task storage backend (SQLite).

Provides the relational store the board talks to: task CRUD with identity
projections, read-only collaborator tables (profiles, inventory) and an
append-only change log that backs the change feed.
"""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterable

from .errors import PersistenceError, ValidationError
from .schema import (
    Asset,
    ChangeEvent,
    ChangeType,
    Department,
    Identity,
    Task,
    TaskPriority,
    TaskStatus,
    parse_date,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_DB = Path.home() / ".local" / "share" / "pipeline-board" / "pipeline.db"

# Patch keys accepted by update(), mapped to their column
PATCH_COLUMNS = {
    "title": "title",
    "description": "description",
    "department": "department",
    "status": "status",
    "priority": "priority",
    "sku_ref": "sku_ref",
    "asset_code": "sku_ref",
    "assigned_to": "assigned_to",
    "assignee_id": "assigned_to",
    "due_date": "due_date",
    "order_index": "order_index",
}
IMMUTABLE_FIELDS = {"id", "task_id", "user_id", "creator_id", "created_at"}
TEXT_COLUMNS = {"title", "description", "sku_ref", "assigned_to"}
FILTER_COLUMNS = {"id", "department", "status", "priority", "user_id", "assigned_to", "sku_ref"}
ORDER_COLUMNS = {"created_at", "updated_at", "order_index", "title"}

_TASK_SELECT = """
    SELECT t.*,
           c.id AS creator_pid, c.full_name AS creator_name, c.avatar_url AS creator_avatar,
           a.id AS assignee_pid, a.full_name AS assignee_name, a.avatar_url AS assignee_avatar
    FROM tasks t
    LEFT JOIN profiles c ON c.id = t.user_id
    LEFT JOIN profiles a ON a.id = t.assigned_to
"""


def _enum_values(enum_cls) -> str:
    return ", ".join(f"'{m.value}'" for m in enum_cls)


@contextmanager
def _connect(db_path: str):
    """Open a connection with FK enforcement and WAL mode; commit or roll back on exit."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        with conn:
            yield conn
    finally:
        conn.close()


class TaskStore:
    """SQLite-backed store for pipeline tasks."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(DEFAULT_DB)
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL CHECK (length(trim(title)) > 0),
                    description TEXT DEFAULT '',
                    sku_ref TEXT,
                    department TEXT NOT NULL DEFAULT 'planning'
                        CHECK (department IN ({_enum_values(Department)})),
                    status TEXT NOT NULL DEFAULT 'todo'
                        CHECK (status IN ({_enum_values(TaskStatus)})),
                    priority TEXT NOT NULL DEFAULT 'medium'
                        CHECK (priority IN ({_enum_values(TaskPriority)})),
                    user_id TEXT NOT NULL,
                    assigned_to TEXT,
                    due_date TEXT,
                    order_index INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id TEXT PRIMARY KEY,
                    full_name TEXT DEFAULT '',
                    avatar_url TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS inventory (
                    sku TEXT PRIMARY KEY,
                    name TEXT DEFAULT ''
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS task_changes (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    op TEXT NOT NULL,
                    task_id TEXT,
                    committed_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_department ON tasks(department)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")

    # ── Tasks ────────────────────────────────────────────────────────────

    def query(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order_by: str = "created_at",
        descending: bool = False,
    ) -> List[Task]:
        """List tasks joined with creator/assignee projections."""
        if order_by not in ORDER_COLUMNS:
            raise ValidationError(f"Cannot order by: {order_by}")
        where, params = [], []
        for key, value in (filters or {}).items():
            if key not in FILTER_COLUMNS:
                raise ValidationError(f"Cannot filter by: {key}")
            where.append(f"t.{key} = ?")
            params.append(getattr(value, "value", value))
        sql = _TASK_SELECT
        if where:
            sql += " WHERE " + " AND ".join(where)
        direction = "DESC" if descending else "ASC"
        sql += f" ORDER BY t.{order_by} {direction}, t.rowid {direction}"
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error("Error querying tasks: %s", e)
            raise PersistenceError(f"query failed: {e}") from e
        return [self._row_to_task(row) for row in rows]

    def get(self, task_id: str) -> Optional[Task]:
        """Retrieve a single task by ID, or None if it does not exist."""
        rows = self.query({"id": task_id})
        return rows[0] if rows else None

    def insert(self, task: Task) -> Task:
        """Insert a new task and log the change. Returns the stored row."""
        now = utc_now().isoformat()
        data = task.to_dict()
        try:
            with _connect(self.db_path) as conn:
                order_index = data["order_index"]
                if not order_index:
                    row = conn.execute(
                        "SELECT COALESCE(MAX(order_index), 0) FROM tasks WHERE department = ?",
                        (data["department"],),
                    ).fetchone()
                    order_index = int(row[0]) + 1
                conn.execute("""
                    INSERT INTO tasks
                    (id, title, description, sku_ref, department, status, priority,
                     user_id, assigned_to, due_date, order_index, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    data["id"],
                    data["title"],
                    data["description"],
                    data["sku_ref"],
                    data["department"],
                    data["status"],
                    data["priority"],
                    data["user_id"],
                    data["assigned_to"],
                    data["due_date"],
                    order_index,
                    data["created_at"] or now,
                    now,
                ))
                self._log_change(conn, ChangeType.INSERT, data["id"], now)
                row = conn.execute(_TASK_SELECT + " WHERE t.id = ?", (data["id"],)).fetchone()
        except sqlite3.Error as e:
            logger.error("Error inserting task %s: %s", task.task_id, e)
            raise PersistenceError(f"insert failed: {e}") from e
        return self._row_to_task(row)

    def update(self, task_id: str, patch: Dict[str, Any]) -> Optional[Task]:
        """
        Apply a partial update to one row.

        Returns the updated task, or None when the row no longer exists
        (for example it was deleted by its creator in the meantime).
        """
        columns = self._validate_patch(patch)
        now = utc_now().isoformat()
        sets = [f"{col} = ?" for col in columns] + ["updated_at = ?"]
        params = list(columns.values()) + [now, task_id]
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(f"UPDATE tasks SET {', '.join(sets)} WHERE id = ?", params)
                if cur.rowcount == 0:
                    return None
                self._log_change(conn, ChangeType.UPDATE, task_id, now)
                row = conn.execute(_TASK_SELECT + " WHERE t.id = ?", (task_id,)).fetchone()
        except sqlite3.Error as e:
            logger.error("Error updating task %s: %s", task_id, e)
            raise PersistenceError(f"update failed: {e}") from e
        return self._row_to_task(row)

    def delete(self, task_id: str) -> bool:
        """Delete a task. Returns False if no such row existed."""
        now = utc_now().isoformat()
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
                if cur.rowcount == 0:
                    return False
                self._log_change(conn, ChangeType.DELETE, task_id, now)
                return True
        except sqlite3.Error as e:
            logger.error("Error deleting task %s: %s", task_id, e)
            raise PersistenceError(f"delete failed: {e}") from e

    def counts_by_department(self) -> Dict[str, int]:
        """Task count per department, zero-filled for all five stages."""
        counts = {d.value: 0 for d in Department}
        try:
            with _connect(self.db_path) as conn:
                for row in conn.execute("SELECT department, COUNT(*) FROM tasks GROUP BY department"):
                    counts[row[0]] = row[1]
        except sqlite3.Error as e:
            raise PersistenceError(f"count failed: {e}") from e
        return counts

    def stats(self) -> Dict[str, Any]:
        """Board statistics grouped by department, status and priority."""
        stats = {
            "by_department": self.counts_by_department(),
            "by_status": {s.value: 0 for s in TaskStatus},
            "by_priority": {p.value: 0 for p in TaskPriority},
            "total": 0,
            "active": 0,
        }
        try:
            with _connect(self.db_path) as conn:
                for row in conn.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status"):
                    stats["by_status"][row[0]] = row[1]
                    stats["total"] += row[1]
                for row in conn.execute("SELECT priority, COUNT(*) FROM tasks GROUP BY priority"):
                    stats["by_priority"][row[0]] = row[1]
        except sqlite3.Error as e:
            raise PersistenceError(f"stats failed: {e}") from e
        stats["active"] = stats["total"] - stats["by_status"][TaskStatus.COMPLETED.value]
        return stats

    # ── Change log ───────────────────────────────────────────────────────

    def changes_since(self, seq: int, limit: int = 500) -> List[ChangeEvent]:
        """Committed changes with a sequence number above `seq`, oldest first."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT seq, op, task_id, committed_at FROM task_changes "
                    "WHERE seq > ? ORDER BY seq ASC LIMIT ?",
                    (seq, limit),
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"change log read failed: {e}") from e
        return [ChangeEvent.from_dict(dict(r)) for r in rows]

    def latest_change_seq(self) -> int:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT COALESCE(MAX(seq), 0) FROM task_changes").fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"change log read failed: {e}") from e
        return int(row[0])

    # ── Collaborators (profiles, inventory) ──────────────────────────────

    def upsert_identity(self, identity: Identity) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO profiles (id, full_name, avatar_url) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET full_name=excluded.full_name, avatar_url=excluded.avatar_url
            """, (identity.identity_id, identity.display_name, identity.avatar_url))

    def upsert_asset(self, asset: Asset) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("""
                INSERT INTO inventory (sku, name) VALUES (?, ?)
                ON CONFLICT(sku) DO UPDATE SET name=excluded.name
            """, (asset.asset_code, asset.asset_name))

    def seed(self, identities: Iterable[Identity] = (), assets: Iterable[Asset] = ()) -> None:
        """Load collaborator lists (used by tests and the verify script)."""
        for identity in identities:
            self.upsert_identity(identity)
        for asset in assets:
            self.upsert_asset(asset)

    def list_identities(self) -> List[Identity]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute("SELECT id, full_name, avatar_url FROM profiles ORDER BY full_name").fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"profiles read failed: {e}") from e
        return [Identity.from_dict(dict(r)) for r in rows]

    def list_assets(self) -> List[Asset]:
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute("SELECT sku, name FROM inventory ORDER BY sku").fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"inventory read failed: {e}") from e
        return [Asset.from_dict(dict(r)) for r in rows]

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _log_change(conn: sqlite3.Connection, change_type: ChangeType, task_id: str, when: str) -> None:
        conn.execute(
            "INSERT INTO task_changes (op, task_id, committed_at) VALUES (?, ?, ?)",
            (change_type.value, task_id, when),
        )

    @staticmethod
    def _validate_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
        """Map a patch onto column values. Raises ValidationError before any I/O."""
        if not patch:
            raise ValidationError("Empty patch")
        touched = IMMUTABLE_FIELDS.intersection(patch)
        if touched:
            raise ValidationError(f"Immutable fields cannot change: {sorted(touched)}")
        columns: Dict[str, Any] = {}
        for key, value in patch.items():
            col = PATCH_COLUMNS.get(key)
            if col is None:
                raise ValidationError(f"Unknown field: {key}")
            if col in TEXT_COLUMNS and value is not None and not isinstance(value, str):
                raise ValidationError(f"Invalid {key}: expected text, got {value!r}")
            try:
                if col == "department":
                    value = Department.from_str(value).value
                elif col == "status":
                    value = TaskStatus.from_str(value).value
                elif col == "priority":
                    value = TaskPriority.from_str(value).value
                elif col == "due_date":
                    value = parse_date(value)
                    value = value.isoformat() if value else None
                elif col == "order_index":
                    value = int(value)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid {key}: {value!r}") from e
            if col == "title":
                value = (value or "").strip()
                if not value:
                    raise ValidationError("Title is required")
            elif col in ("sku_ref", "assigned_to"):
                value = value or None
            columns[col] = value
        return columns

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        """Convert a joined database row to a Task with projections."""
        data = dict(row)
        if data.get("creator_pid"):
            data["creator"] = {
                "id": data["creator_pid"],
                "full_name": data.get("creator_name") or "",
                "avatar_url": data.get("creator_avatar"),
            }
        if data.get("assignee_pid"):
            data["assignee"] = {
                "id": data["assignee_pid"],
                "full_name": data.get("assignee_name") or "",
                "avatar_url": data.get("assignee_avatar"),
            }
        return Task.from_dict(data)
