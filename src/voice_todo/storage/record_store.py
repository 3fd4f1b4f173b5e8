# src/voice_todo/storage/record_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from ..core.errors import RecordNotFoundError
from ..core.models import ArchivedNote, Category, Priority, Task, WorkSlot

logger = logging.getLogger(__name__)

_UNSET: Any = object()

TABLE_TASKS = "tasks"
TABLE_CATEGORIES = "categories"
TABLE_WORK_SLOTS = "work_slots"
TABLE_ARCHIVED_NOTES = "archived_notes"

ChangeListener = Callable[[frozenset[str]], None]


class StoreSession:
    """
    Operations bound to one open transaction.

    Obtained from RecordStore.transaction(); never outlives it.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self.touched: set[str] = set()

    # ---- row mapping ----

    @staticmethod
    def _refs_to_str(refs: list[str] | None) -> str:
        return json.dumps(list(refs or []), ensure_ascii=False)

    @staticmethod
    def _str_to_refs(s: str | None) -> list[str]:
        if not s:
            return []
        try:
            val = json.loads(s)
        except ValueError:
            return []
        return [str(x) for x in val] if isinstance(val, list) else []

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            content=str(row["content"] or ""),
            category=str(row["category"] or ""),
            priority=Priority.from_db(row["priority"]),
            is_completed=bool(row["is_completed"]),
            is_processing=bool(row["is_processing"]),
            is_active=bool(row["is_active"]),
            created_at=float(row["created_at"] or 0.0),
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
            image_refs=self._str_to_refs(row["image_refs"]),
        )

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=int(row["id"]),
            name=str(row["name"]),
            color=row["color"],
            created_at=float(row["created_at"] or 0.0),
        )

    @staticmethod
    def _row_to_slot(row: sqlite3.Row) -> WorkSlot:
        return WorkSlot(
            id=int(row["id"]),
            position=int(row["position"]),
            task_id=int(row["task_id"]) if row["task_id"] is not None else None,
            notes=str(row["notes"] or ""),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> ArchivedNote:
        return ArchivedNote(
            id=int(row["id"]),
            task_id=int(row["task_id"]),
            notes=str(row["notes"]),
            archived_at=float(row["archived_at"]),
        )

    def _insert(self, table: str, sql: str, params: tuple[Any, ...]) -> int:
        cur = self._conn.execute(sql, params)
        self.touched.add(table)
        rowid = cur.lastrowid
        if rowid is None:
            raise RuntimeError(f"SQLite did not return lastrowid for {table} insert")
        return int(rowid)

    def _write(self, table: str, sql: str, params: tuple[Any, ...] | list[Any]) -> int:
        cur = self._conn.execute(sql, params)
        if cur.rowcount:
            self.touched.add(table)
        return cur.rowcount

    # ---- tasks ----

    def list_tasks(self) -> list[Task]:
        """All tasks, newest first."""
        rows = self._conn.execute("SELECT * FROM tasks ORDER BY created_at DESC, id DESC").fetchall()
        return [self._row_to_task(r) for r in rows]

    def list_tasks_by_category(self, name: str) -> list[Task]:
        rows = self._conn.execute(
            "SELECT * FROM tasks WHERE category = ? ORDER BY created_at DESC, id DESC",
            (name,),
        ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def find_task(self, task_id: int) -> Task | None:
        row = self._conn.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
        return self._row_to_task(row) if row else None

    def get_task(self, task_id: int) -> Task:
        task = self.find_task(task_id)
        if task is None:
            raise RecordNotFoundError("Task", task_id)
        return task

    def count_tasks(self) -> int:
        (n,) = self._conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(n)

    def create_task(
            self,
            *,
            content: str,
            category: str,
            priority: Priority = Priority.MEDIUM,
            is_processing: bool = False,
            image_refs: list[str] | None = None,
            created_at: float | None = None,
    ) -> Task:
        now = time.time() if created_at is None else float(created_at)
        task_id = self._insert(
            TABLE_TASKS,
            """
            INSERT INTO tasks(
                content, category, priority,
                is_completed, is_processing, is_active,
                created_at, completed_at, image_refs
            )
            VALUES (?, ?, ?, 0, ?, 0, ?, NULL, ?)
            """,
            (
                content,
                category,
                Priority(priority).value,
                int(bool(is_processing)),
                now,
                self._refs_to_str(image_refs),
            ),
        )
        logger.debug("Task added id=%s category=%s processing=%s", task_id, category, is_processing)
        return self.get_task(task_id)

    def update_task(
            self,
            task_id: int,
            *,
            content: str = _UNSET,
            category: str = _UNSET,
            priority: Priority = _UNSET,
            is_processing: bool = _UNSET,
            is_active: bool = _UNSET,
            image_refs: list[str] = _UNSET,
    ) -> bool:
        """Patch the given fields; returns False when the task does not exist."""
        fields: list[str] = []
        params: list[Any] = []

        if content is not _UNSET:
            fields.append("content = ?")
            params.append(content)
        if category is not _UNSET:
            fields.append("category = ?")
            params.append(category)
        if priority is not _UNSET:
            fields.append("priority = ?")
            params.append(Priority(priority).value)
        if is_processing is not _UNSET:
            fields.append("is_processing = ?")
            params.append(int(bool(is_processing)))
        if is_active is not _UNSET:
            fields.append("is_active = ?")
            params.append(int(bool(is_active)))
        if image_refs is not _UNSET:
            fields.append("image_refs = ?")
            params.append(self._refs_to_str(image_refs))

        if not fields:
            return self.find_task(task_id) is not None

        params.append(int(task_id))
        return self._write(TABLE_TASKS, f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?", params) == 1

    def toggle_complete(self, task_id: int) -> Task:
        task = self.get_task(task_id)
        completed = not task.is_completed
        self._write(
            TABLE_TASKS,
            "UPDATE tasks SET is_completed = ?, completed_at = ? WHERE id = ?",
            (int(completed), time.time() if completed else None, int(task_id)),
        )
        return self.get_task(task_id)

    def remove_task(self, task_id: int) -> bool:
        return self._write(TABLE_TASKS, "DELETE FROM tasks WHERE id = ?", (int(task_id),)) == 1

    def reassign_category(self, old: str, new: str) -> int:
        return self._write(TABLE_TASKS, "UPDATE tasks SET category = ? WHERE category = ?", (new, old))

    def open_task_categories(self) -> list[str]:
        """Distinct categories of non-completed tasks, oldest task first."""
        rows = self._conn.execute(
            """
            SELECT category, MIN(created_at) AS first_seen
            FROM tasks
            WHERE is_completed = 0
            GROUP BY category
            ORDER BY first_seen ASC
            """
        ).fetchall()
        return [str(r["category"]) for r in rows]

    # ---- categories ----

    def list_categories(self) -> list[Category]:
        """Registered categories, oldest first."""
        rows = self._conn.execute("SELECT * FROM categories ORDER BY created_at ASC, id ASC").fetchall()
        return [self._row_to_category(r) for r in rows]

    def get_category(self, name: str) -> Category | None:
        row = self._conn.execute("SELECT * FROM categories WHERE name = ?", (name,)).fetchone()
        return self._row_to_category(row) if row else None

    def insert_category_if_absent(self, name: str, color: str | None = None) -> Category:
        self._write(
            TABLE_CATEGORIES,
            "INSERT OR IGNORE INTO categories(name, color, created_at) VALUES (?, ?, ?)",
            (name, color, time.time()),
        )
        category = self.get_category(name)
        if category is None:
            raise RuntimeError(f"Category insert did not persist: {name!r}")
        return category

    def delete_category(self, name: str) -> bool:
        return self._write(TABLE_CATEGORIES, "DELETE FROM categories WHERE name = ?", (name,)) == 1

    # ---- work slots ----

    def list_slots(self) -> list[WorkSlot]:
        rows = self._conn.execute("SELECT * FROM work_slots ORDER BY position ASC, id ASC").fetchall()
        return [self._row_to_slot(r) for r in rows]

    def get_slot(self, slot_id: int) -> WorkSlot:
        row = self._conn.execute("SELECT * FROM work_slots WHERE id = ?", (int(slot_id),)).fetchone()
        if row is None:
            raise RecordNotFoundError("WorkSlot", slot_id)
        return self._row_to_slot(row)

    def find_slots_by_task(self, task_id: int) -> list[WorkSlot]:
        rows = self._conn.execute(
            "SELECT * FROM work_slots WHERE task_id = ? ORDER BY position ASC",
            (int(task_id),),
        ).fetchall()
        return [self._row_to_slot(r) for r in rows]

    def max_slot_position(self) -> int | None:
        (n,) = self._conn.execute("SELECT MAX(position) FROM work_slots").fetchone()
        return int(n) if n is not None else None

    def insert_slot(self, position: int) -> WorkSlot:
        now = time.time()
        slot_id = self._insert(
            TABLE_WORK_SLOTS,
            "INSERT INTO work_slots(position, task_id, notes, created_at, updated_at) VALUES (?, NULL, '', ?, ?)",
            (int(position), now, now),
        )
        return self.get_slot(slot_id)

    def patch_slot(
            self,
            slot_id: int,
            *,
            task_id: int | None = _UNSET,
            notes: str = _UNSET,
            position: int = _UNSET,
            touch: bool = True,
    ) -> None:
        fields: list[str] = []
        params: list[Any] = []

        if task_id is not _UNSET:
            fields.append("task_id = ?")
            params.append(int(task_id) if task_id is not None else None)
        if notes is not _UNSET:
            fields.append("notes = ?")
            params.append(notes)
        if position is not _UNSET:
            fields.append("position = ?")
            params.append(int(position))
        if touch:
            fields.append("updated_at = ?")
            params.append(time.time())

        if not fields:
            return

        params.append(int(slot_id))
        if self._write(TABLE_WORK_SLOTS, f"UPDATE work_slots SET {', '.join(fields)} WHERE id = ?", params) != 1:
            raise RecordNotFoundError("WorkSlot", slot_id)

    def delete_slot(self, slot_id: int) -> bool:
        return self._write(TABLE_WORK_SLOTS, "DELETE FROM work_slots WHERE id = ?", (int(slot_id),)) == 1

    # ---- archived notes ----

    def insert_archived_note(self, task_id: int, notes: str) -> ArchivedNote:
        note_id = self._insert(
            TABLE_ARCHIVED_NOTES,
            "INSERT INTO archived_notes(task_id, notes, archived_at) VALUES (?, ?, ?)",
            (int(task_id), notes, time.time()),
        )
        row = self._conn.execute("SELECT * FROM archived_notes WHERE id = ?", (note_id,)).fetchone()
        return self._row_to_note(row)

    def list_archived_notes(self, task_id: int) -> list[ArchivedNote]:
        rows = self._conn.execute(
            "SELECT * FROM archived_notes WHERE task_id = ? ORDER BY archived_at DESC, id DESC",
            (int(task_id),),
        ).fetchall()
        return [self._row_to_note(r) for r in rows]


class RecordStore:
    """
    SQLite record store for tasks, categories, work slots and archived notes.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Consistency:
    - every operation runs inside transaction() (BEGIN IMMEDIATE, one connection)
    - transactions are serialized in-process; a nested transaction() on the same
      thread joins the outer one
    - listeners are notified with the written tables after the outermost commit
    """

    def __init__(self, db_path: str | Path = "voice_todo.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._local = threading.local()
        self._listeners: list[ChangeListener] = []
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("RecordStore ready db=%s tasks=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL,
                    priority TEXT NOT NULL DEFAULT 'medium',
                    is_completed INTEGER NOT NULL DEFAULT 0,
                    is_processing INTEGER NOT NULL DEFAULT 0,
                    is_active INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    completed_at REAL,
                    image_refs TEXT NOT NULL DEFAULT '[]'
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    color TEXT,
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS work_slots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    position INTEGER NOT NULL,
                    task_id INTEGER,
                    notes TEXT NOT NULL DEFAULT '',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS archived_notes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER NOT NULL,
                    notes TEXT NOT NULL,
                    archived_at REAL NOT NULL
                )
                """
            )

            # Migrations (safe): add missing task columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("RecordStore migration: added column tasks.%s", name)

            add_col("is_processing", "INTEGER NOT NULL DEFAULT 0")
            add_col("is_active", "INTEGER NOT NULL DEFAULT 0")
            add_col("completed_at", "REAL")
            add_col("image_refs", "TEXT NOT NULL DEFAULT '[]'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_category ON tasks(category)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_slots_position ON work_slots(position)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_slots_task ON work_slots(task_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notes_task ON archived_notes(task_id)")

            cur.execute("COMMIT")
        finally:
            conn.close()

    # ---- transactions / change feed ----

    @contextlib.contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        current: StoreSession | None = getattr(self._local, "session", None)
        if current is not None:
            yield current
            return

        with self._lock:
            conn = self._get_conn()
            session = StoreSession(conn)
            self._local.session = session
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield session
                conn.execute("COMMIT")
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    conn.execute("ROLLBACK")
                session.touched.clear()
                raise
            finally:
                self._local.session = None
                conn.close()

        if session.touched:
            self._notify(frozenset(session.touched))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, tables: frozenset[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(tables)
            except Exception:
                logger.exception("Store change listener failed tables=%s", sorted(tables))

    # ---- public API (single-operation transactions) ----

    def count_tasks(self) -> int:
        with self.transaction() as tx:
            return tx.count_tasks()

    def list_tasks(self) -> list[Task]:
        with self.transaction() as tx:
            return tx.list_tasks()

    def get_task(self, task_id: int) -> Task:
        with self.transaction() as tx:
            return tx.get_task(task_id)

    def find_task(self, task_id: int) -> Task | None:
        with self.transaction() as tx:
            return tx.find_task(task_id)

    def list_tasks_by_category(self, name: str) -> list[Task]:
        with self.transaction() as tx:
            return tx.list_tasks_by_category(name)

    def create_task(self, **fields: Any) -> Task:
        with self.transaction() as tx:
            return tx.create_task(**fields)

    def update_task(self, task_id: int, **fields: Any) -> bool:
        with self.transaction() as tx:
            return tx.update_task(task_id, **fields)

    def toggle_complete(self, task_id: int) -> Task:
        with self.transaction() as tx:
            return tx.toggle_complete(task_id)

    def remove_task(self, task_id: int) -> bool:
        with self.transaction() as tx:
            return tx.remove_task(task_id)

    def list_categories(self) -> list[Category]:
        with self.transaction() as tx:
            return tx.list_categories()

    def list_slots(self) -> list[WorkSlot]:
        with self.transaction() as tx:
            return tx.list_slots()

    def list_archived_notes(self, task_id: int) -> list[ArchivedNote]:
        with self.transaction() as tx:
            return tx.list_archived_notes(task_id)
