from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .feedback_records import DefenseSchedule, EvaluationAssignment, FeedbackForm

_log = logging.getLogger(__name__)

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS feedback_forms (
        id TEXT PRIMARY KEY,
        key TEXT NOT NULL,
        version INTEGER NOT NULL CHECK (version > 0),
        title TEXT NOT NULL,
        description TEXT NULL,
        schema_json TEXT NOT NULL DEFAULT '{}',
        active INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS feedback_forms_key_version_uidx ON feedback_forms (key, version)",
    # at most one active row, even if a caller bypasses activate_form
    "CREATE UNIQUE INDEX IF NOT EXISTS feedback_forms_one_active_uidx ON feedback_forms (active) WHERE active = 1",
    """
    CREATE TABLE IF NOT EXISTS defense_schedules (
        id TEXT PRIMARY KEY,
        group_id TEXT NULL,
        pinned_form_id TEXT NULL REFERENCES feedback_forms(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS student_evaluations (
        id TEXT PRIMARY KEY,
        schedule_id TEXT NOT NULL REFERENCES defense_schedules(id),
        student_id TEXT NOT NULL COLLATE NOCASE,
        form_id TEXT NULL REFERENCES feedback_forms(id),
        status TEXT NOT NULL CHECK (status IN ('pending', 'submitted', 'locked')),
        answers_json TEXT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        submitted_at TEXT NULL,
        locked_at TEXT NULL,
        UNIQUE (schedule_id, student_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS student_evaluations_schedule_ix ON student_evaluations (schedule_id)",
)

_FORM_COLUMNS = "id, key, version, title, description, schema_json, active, created_at, updated_at"
_ASSIGNMENT_COLUMNS = (
    "id, schedule_id, student_id, form_id, status, answers_json, created_at, updated_at, submitted_at, locked_at"
)


def _load_json(raw: Any, *, what: str, row_id: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except Exception:
        _log.warning("corrupt %s for %s", what, row_id, exc_info=True)
        return None


def _dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def _form_from_row(row: sqlite3.Row) -> FeedbackForm:
    schema = _load_json(row["schema_json"], what="schema_json", row_id=row["id"])
    return FeedbackForm(
        id=str(row["id"]),
        key=str(row["key"]),
        version=int(row["version"]),
        title=str(row["title"] or ""),
        description=row["description"],
        schema=schema if isinstance(schema, dict) else {},
        active=bool(int(row["active"] or 0)),
        created_at=str(row["created_at"] or ""),
        updated_at=str(row["updated_at"] or ""),
    )


def _assignment_from_row(row: sqlite3.Row) -> EvaluationAssignment:
    answers = _load_json(row["answers_json"], what="answers_json", row_id=row["id"])
    return EvaluationAssignment(
        id=str(row["id"]),
        schedule_id=str(row["schedule_id"]),
        student_id=str(row["student_id"]),
        form_id=row["form_id"],
        status=str(row["status"]),
        answers=answers if isinstance(answers, dict) else None,
        created_at=str(row["created_at"] or ""),
        updated_at=str(row["updated_at"] or ""),
        submitted_at=row["submitted_at"],
        locked_at=row["locked_at"],
    )


class _KeyedLocks:
    """Per-key mutexes; entries are dropped once no thread holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, List[Any]] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] <= 0:
                    self._locks.pop(key, None)


class FeedbackStoreSession:
    """Queries bound to one connection; inside ``transaction`` every call shares the same unit."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # -- forms -------------------------------------------------------------

    def get_form(self, form_id: str) -> Optional[FeedbackForm]:
        row = self.conn.execute(
            f"SELECT {_FORM_COLUMNS} FROM feedback_forms WHERE id = ?", (form_id,)
        ).fetchone()
        return _form_from_row(row) if row is not None else None

    def get_active_form(self) -> Optional[FeedbackForm]:
        row = self.conn.execute(
            f"SELECT {_FORM_COLUMNS} FROM feedback_forms WHERE active = 1 LIMIT 1"
        ).fetchone()
        return _form_from_row(row) if row is not None else None

    def list_forms(self) -> List[FeedbackForm]:
        rows = self.conn.execute(
            f"SELECT {_FORM_COLUMNS} FROM feedback_forms ORDER BY key, version DESC"
        ).fetchall()
        return [_form_from_row(row) for row in rows or []]

    def count_active_forms(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS n FROM feedback_forms WHERE active = 1").fetchone()
        return int(row["n"] or 0)

    def count_forms(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS n FROM feedback_forms").fetchone()
        return int(row["n"] or 0)

    def max_form_version(self, key: str) -> int:
        row = self.conn.execute(
            "SELECT MAX(version) AS v FROM feedback_forms WHERE key = ?", (key,)
        ).fetchone()
        return int(row["v"] or 0)

    def insert_form(self, form: FeedbackForm) -> None:
        self.conn.execute(
            f"INSERT INTO feedback_forms ({_FORM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                form.id,
                form.key,
                int(form.version),
                form.title,
                form.description,
                _dump_json(form.schema or {}),
                1 if form.active else 0,
                form.created_at,
                form.updated_at,
            ),
        )

    def activate_form(self, form_id: str, updated_at: str) -> None:
        # deactivate first so the partial unique index never sees two active rows
        self.conn.execute(
            "UPDATE feedback_forms SET active = 0, updated_at = ? WHERE active = 1 AND id != ?",
            (updated_at, form_id),
        )
        self.conn.execute(
            "UPDATE feedback_forms SET active = 1, updated_at = ? WHERE id = ?",
            (updated_at, form_id),
        )

    # -- schedules ---------------------------------------------------------

    def get_schedule(self, schedule_id: str) -> Optional[DefenseSchedule]:
        row = self.conn.execute(
            "SELECT id, group_id, pinned_form_id FROM defense_schedules WHERE id = ?", (schedule_id,)
        ).fetchone()
        if row is None:
            return None
        return DefenseSchedule(
            id=str(row["id"]),
            group_id=row["group_id"],
            pinned_form_id=row["pinned_form_id"],
        )

    def upsert_schedule(self, schedule_id: str, group_id: Optional[str]) -> None:
        self.conn.execute(
            """
            INSERT INTO defense_schedules (id, group_id, pinned_form_id)
            VALUES (?, ?, NULL)
            ON CONFLICT(id) DO UPDATE SET group_id = excluded.group_id
            """,
            (schedule_id, group_id),
        )

    def set_schedule_pin(self, schedule_id: str, form_id: Optional[str]) -> None:
        self.conn.execute(
            "UPDATE defense_schedules SET pinned_form_id = ? WHERE id = ?",
            (form_id, schedule_id),
        )

    # -- assignments -------------------------------------------------------

    def get_assignment(self, assignment_id: str) -> Optional[EvaluationAssignment]:
        row = self.conn.execute(
            f"SELECT {_ASSIGNMENT_COLUMNS} FROM student_evaluations WHERE id = ?", (assignment_id,)
        ).fetchone()
        return _assignment_from_row(row) if row is not None else None

    def find_assignment(self, schedule_id: str, student_id: str) -> Optional[EvaluationAssignment]:
        row = self.conn.execute(
            f"SELECT {_ASSIGNMENT_COLUMNS} FROM student_evaluations WHERE schedule_id = ? AND student_id = ?",
            (schedule_id, student_id),
        ).fetchone()
        return _assignment_from_row(row) if row is not None else None

    def list_assignments(self, schedule_id: str) -> List[EvaluationAssignment]:
        rows = self.conn.execute(
            f"SELECT {_ASSIGNMENT_COLUMNS} FROM student_evaluations WHERE schedule_id = ? ORDER BY created_at, student_id",
            (schedule_id,),
        ).fetchall()
        return [_assignment_from_row(row) for row in rows or []]

    def count_assignments_by_status(self, schedule_id: str) -> Dict[str, int]:
        rows = self.conn.execute(
            "SELECT status, COUNT(*) AS n FROM student_evaluations WHERE schedule_id = ? GROUP BY status",
            (schedule_id,),
        ).fetchall()
        return {str(row["status"]): int(row["n"] or 0) for row in rows or []}

    def insert_assignment(self, assignment: EvaluationAssignment) -> None:
        self.conn.execute(
            f"INSERT INTO student_evaluations ({_ASSIGNMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                assignment.id,
                assignment.schedule_id,
                assignment.student_id,
                assignment.form_id,
                assignment.status,
                _dump_json(assignment.answers),
                assignment.created_at,
                assignment.updated_at,
                assignment.submitted_at,
                assignment.locked_at,
            ),
        )

    def update_assignment(self, assignment: EvaluationAssignment) -> None:
        self.conn.execute(
            """
            UPDATE student_evaluations SET
                form_id = ?,
                status = ?,
                answers_json = ?,
                updated_at = ?,
                submitted_at = ?,
                locked_at = ?
            WHERE id = ?
            """,
            (
                assignment.form_id,
                assignment.status,
                _dump_json(assignment.answers),
                assignment.updated_at,
                assignment.submitted_at,
                assignment.locked_at,
                assignment.id,
            ),
        )


class FeedbackStore:
    def __init__(self, db_path: Path, *, busy_timeout_sec: float = 10.0):
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_sec = float(busy_timeout_sec)
        self._locks = _KeyedLocks()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_sec,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
            except Exception:
                _log.warning("WAL journal mode not available for %s", self.db_path, exc_info=True)
            for statement in _SCHEMA_STATEMENTS:
                conn.execute(statement)
        finally:
            conn.close()

    @contextmanager
    def session(self) -> Iterator[FeedbackStoreSession]:
        """Autocommit connection for reads; takes no keyed lock."""
        conn = self._connect()
        try:
            yield FeedbackStoreSession(conn)
        finally:
            conn.close()

    @contextmanager
    def transaction(self, lock_key: str) -> Iterator[FeedbackStoreSession]:
        """Serialize on ``lock_key`` in-process and run the body as one SQLite write transaction."""
        with self._locks.hold(lock_key):
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield FeedbackStoreSession(conn)
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()

    def register_schedule(self, schedule_id: str, *, group_id: Optional[str] = None) -> DefenseSchedule:
        with self.transaction(schedule_lock_key(schedule_id)) as tx:
            tx.upsert_schedule(schedule_id, group_id)
            schedule = tx.get_schedule(schedule_id)
        if schedule is None:
            raise RuntimeError(f"schedule_upsert_failed:{schedule_id}")
        return schedule


def schedule_lock_key(schedule_id: str) -> str:
    return f"schedule:{schedule_id}"


def assignment_lock_key(assignment_id: str) -> str:
    return f"assignment:{assignment_id}"


FORMS_LOCK_KEY = "forms"
