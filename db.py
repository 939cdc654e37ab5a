import json
import logging
import os
import sqlite3
import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, TypeVar

from db_pool import SQLiteConnectionPool

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

_RETRY_ATTEMPTS = 3
_RETRY_BASE_DELAY = 0.05
_TRANSIENT_MARKERS = ("locked", "busy")
_sleep = time.sleep

T = TypeVar("T")

STUDENT_LEVELS = ("CP", "CE1", "CE2", "CM1", "CM2")
SUBJECTS = ("MATHEMATIQUES", "FRANCAIS", "SCIENCES", "HISTOIRE_GEOGRAPHIE", "ANGLAIS")
PERIODS = ("P1", "P2", "P3", "P4", "P5")
EXERCISE_TYPES = ("QCM", "CALCUL", "DRAG_DROP")
EXERCISE_DIFFICULTIES = ("decouverte", "consolidation", "maitrise")
PROGRESSION_STATUSES = ("NOT_STARTED", "IN_PROGRESS", "COMPLETED", "MASTERED")


class DatastoreError(Exception):
    """Raised when the datastore cannot complete an operation."""
    pass


def configure(path: str, max_connections: int = 10) -> None:
    """Point the datastore at ``path``, replacing the connection pool."""
    global DB_PATH, _pool
    if path == DB_PATH:
        return
    _pool.close_all()
    DB_PATH = path
    _pool = SQLiteConnectionPool(path, max_connections=max_connections)
    logger.info("Datastore configured at %s", path)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _is_transient(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def _with_retry(operation: Callable[[], T], description: str) -> T:
    """Run ``operation``, retrying transient lock errors with exponential backoff."""
    for attempt in range(_RETRY_ATTEMPTS + 1):
        try:
            return operation()
        except sqlite3.OperationalError as exc:
            if not _is_transient(exc):
                raise DatastoreError(f"{description} failed: {exc}") from exc
            if attempt == _RETRY_ATTEMPTS:
                logger.error("%s failed after %d retries: %s", description, _RETRY_ATTEMPTS, exc)
                raise DatastoreError(f"{description} failed: {exc}") from exc
            delay = _RETRY_BASE_DELAY * (2 ** attempt)
            logger.warning("%s hit a transient error (%s); retrying in %.2fs", description, exc, delay)
            _sleep(delay)
        except sqlite3.DatabaseError as exc:
            raise DatastoreError(f"{description} failed: {exc}") from exc
    raise DatastoreError(f"{description} failed")


def _exec(sql: str, params: Iterable = ()):
    def run():
        with _pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            con.commit()
            return cur
    return _with_retry(run, "write")


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    def run():
        with _pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            return cur.fetchall()
    return _with_retry(run, "read")


def run_in_transaction(work: Callable[[sqlite3.Connection], T], description: str = "transaction") -> T:
    """Run ``work(con)`` inside ``BEGIN IMMEDIATE`` and commit.

    The write lock is taken up front, so a read-compute-write inside
    ``work`` cannot interleave with another writer. The whole unit is
    retried when the lock cannot be acquired.
    """
    def run():
        with _pool.get_connection() as con:
            con.execute("BEGIN IMMEDIATE")
            # the pool rolls back whatever is left uncommitted
            result = work(con)
            con.commit()
            return result
    return _with_retry(run, description)


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str], default: Any = None) -> Any:
    if value is None:
        return default
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Discarding undecodable JSON column value")
        return default


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    levels = ",".join(f"'{level}'" for level in STUDENT_LEVELS)
    subjects = ",".join(f"'{subject}'" for subject in SUBJECTS)
    periods = ",".join(f"'{period}'" for period in PERIODS)
    types = ",".join(f"'{kind}'" for kind in EXERCISE_TYPES)
    difficulties = ",".join(f"'{value}'" for value in EXERCISE_DIFFICULTIES)
    statuses = ",".join(f"'{status}'" for status in PROGRESSION_STATUSES)
    with _conn() as con:
        con.executescript(
            f"""
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS students (
              id              INTEGER PRIMARY KEY AUTOINCREMENT,
              first_name      TEXT NOT NULL CHECK(length(first_name) BETWEEN 2 AND 50),
              last_name       TEXT NOT NULL CHECK(length(last_name) BETWEEN 2 AND 50),
              age             INTEGER NOT NULL CHECK(age BETWEEN 5 AND 12),
              level           TEXT NOT NULL CHECK(level IN ({levels})),
              total_points    INTEGER NOT NULL DEFAULT 0 CHECK(total_points >= 0),
              streak_days     INTEGER NOT NULL DEFAULT 0 CHECK(streak_days >= 0),
              preferences     TEXT,
              adaptations     TEXT,
              last_access_at  TEXT,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS modules (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              slug        TEXT NOT NULL UNIQUE,
              title       TEXT NOT NULL,
              description TEXT,
              level       TEXT NOT NULL CHECK(level IN ({levels})),
              subject     TEXT NOT NULL CHECK(subject IN ({subjects})),
              period      TEXT NOT NULL CHECK(period IN ({periods})),
              ordre       INTEGER NOT NULL DEFAULT 1 CHECK(ordre >= 1),
              active      INTEGER NOT NULL DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_modules_level ON modules(level, subject, ordre);

            CREATE TABLE IF NOT EXISTS exercises (
              id                INTEGER PRIMARY KEY AUTOINCREMENT,
              slug              TEXT NOT NULL UNIQUE,
              module_id         INTEGER NOT NULL,
              title             TEXT NOT NULL,
              instruction       TEXT NOT NULL,
              type              TEXT NOT NULL CHECK(type IN ({types})),
              difficulty        TEXT NOT NULL CHECK(difficulty IN ({difficulties})),
              points            INTEGER NOT NULL DEFAULT 10 CHECK(points BETWEEN 1 AND 100),
              estimated_minutes INTEGER NOT NULL DEFAULT 5 CHECK(estimated_minutes BETWEEN 1 AND 60),
              ordre             INTEGER NOT NULL DEFAULT 1 CHECK(ordre >= 1),
              configuration     TEXT NOT NULL,
              active            INTEGER NOT NULL DEFAULT 1,
              FOREIGN KEY(module_id) REFERENCES modules(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_exercises_module ON exercises(module_id, ordre);

            CREATE TABLE IF NOT EXISTS progressions (
              student_id        INTEGER NOT NULL,
              exercise_id       INTEGER NOT NULL,
              status            TEXT NOT NULL CHECK(status IN ({statuses})),
              attempts          INTEGER NOT NULL DEFAULT 0,
              successes         INTEGER NOT NULL DEFAULT 0,
              success_rate      REAL NOT NULL DEFAULT 0 CHECK(success_rate BETWEEN 0 AND 100),
              points            INTEGER NOT NULL DEFAULT 0,
              first_success_at  TEXT,
              last_attempt_at   TEXT,
              history           TEXT NOT NULL DEFAULT '[]',
              PRIMARY KEY(student_id, exercise_id),
              FOREIGN KEY(student_id) REFERENCES students(id) ON DELETE CASCADE,
              FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_progressions_status ON progressions(student_id, status);

            CREATE TABLE IF NOT EXISTS revisions (
              student_id        INTEGER NOT NULL,
              exercise_id       INTEGER NOT NULL,
              next_review       TEXT NOT NULL,
              interval_days     INTEGER NOT NULL DEFAULT 1,
              review_count      INTEGER NOT NULL DEFAULT 0,
              difficulty_factor REAL NOT NULL DEFAULT 2.5 CHECK(difficulty_factor BETWEEN 0.1 AND 5.0),
              last_review       TEXT,
              PRIMARY KEY(student_id, exercise_id),
              FOREIGN KEY(student_id) REFERENCES students(id) ON DELETE CASCADE,
              FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_revisions_due ON revisions(student_id, next_review);

            CREATE TABLE IF NOT EXISTS sessions (
              student_id           INTEGER NOT NULL,
              day                  TEXT NOT NULL,
              exercises_attempted  INTEGER NOT NULL DEFAULT 0,
              exercises_succeeded  INTEGER NOT NULL DEFAULT 0,
              points               INTEGER NOT NULL DEFAULT 0,
              minutes              INTEGER NOT NULL DEFAULT 0,
              PRIMARY KEY(student_id, day),
              FOREIGN KEY(student_id) REFERENCES students(id) ON DELETE CASCADE
            );
            """
        )
        con.commit()


# -------------- students --------------
def _student_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["preferences"] = _decode_json_field(row["preferences"], {})
    data["adaptations"] = _decode_json_field(row["adaptations"], {})
    data.pop("created_at", None)
    return data


def create_student(
    first_name: str,
    last_name: str,
    age: int,
    level: str,
    *,
    preferences: Optional[Mapping[str, Any]] = None,
    adaptations: Optional[Mapping[str, Any]] = None,
) -> int:
    cur = _exec(
        """
        INSERT INTO students(first_name, last_name, age, level, preferences, adaptations)
        VALUES (?,?,?,?,?,?)
        """,
        (
            first_name,
            last_name,
            int(age),
            level,
            json_dumps(dict(preferences or {})),
            json_dumps(dict(adaptations or {})),
        ),
    )
    return int(cur.lastrowid)


def get_student(student_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, first_name, last_name, age, level, total_points, streak_days,
               preferences, adaptations, last_access_at, created_at
        FROM students WHERE id = ?
        """,
        (int(student_id),),
    )
    return _student_from_row(rows[0]) if rows else None


def update_student_access(student_id: int, streak_days: int, last_access_at: datetime) -> None:
    _exec(
        "UPDATE students SET streak_days = ?, last_access_at = ? WHERE id = ?",
        (int(streak_days), _iso(last_access_at), int(student_id)),
    )


def update_student_settings(
    student_id: int,
    preferences: Mapping[str, Any],
    adaptations: Mapping[str, Any],
) -> None:
    _exec(
        "UPDATE students SET preferences = ?, adaptations = ? WHERE id = ?",
        (json_dumps(dict(preferences)), json_dumps(dict(adaptations)), int(student_id)),
    )


# -------------- curriculum --------------
def upsert_module(module: Mapping[str, Any]) -> int:
    """Insert or update a module by ``slug`` and return its id."""
    def work(con: sqlite3.Connection) -> int:
        con.execute(
            """
            INSERT INTO modules(slug, title, description, level, subject, period, ordre, active)
            VALUES (?,?,?,?,?,?,?,?)
            ON CONFLICT(slug) DO UPDATE SET
              title=excluded.title,
              description=excluded.description,
              level=excluded.level,
              subject=excluded.subject,
              period=excluded.period,
              ordre=excluded.ordre,
              active=excluded.active
            """,
            (
                module["slug"],
                module["title"],
                module.get("description"),
                module["level"],
                module["subject"],
                module["period"],
                int(module.get("ordre", 1)),
                1 if module.get("active", True) else 0,
            ),
        )
        row = con.execute("SELECT id FROM modules WHERE slug = ?", (module["slug"],)).fetchone()
        return int(row["id"])
    return run_in_transaction(work, "module upsert")


def upsert_exercises(module_id: int, exercises: Iterable[Mapping[str, Any]]) -> list[int]:
    """Insert or update exercises of ``module_id`` by ``slug``; return their ids in order."""
    to_store = list(exercises)
    if not to_store:
        return []

    def work(con: sqlite3.Connection) -> list[int]:
        ids: list[int] = []
        for exercise in to_store:
            con.execute(
                """
                INSERT INTO exercises(
                  slug, module_id, title, instruction, type, difficulty,
                  points, estimated_minutes, ordre, configuration, active
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(slug) DO UPDATE SET
                  module_id=excluded.module_id,
                  title=excluded.title,
                  instruction=excluded.instruction,
                  type=excluded.type,
                  difficulty=excluded.difficulty,
                  points=excluded.points,
                  estimated_minutes=excluded.estimated_minutes,
                  ordre=excluded.ordre,
                  configuration=excluded.configuration,
                  active=excluded.active
                """,
                (
                    exercise["slug"],
                    int(module_id),
                    exercise["title"],
                    exercise["instruction"],
                    exercise["type"],
                    exercise["difficulty"],
                    int(exercise.get("points", 10)),
                    int(exercise.get("estimated_minutes", 5)),
                    int(exercise.get("ordre", 1)),
                    json_dumps(exercise["configuration"]),
                    1 if exercise.get("active", True) else 0,
                ),
            )
            row = con.execute("SELECT id FROM exercises WHERE slug = ?", (exercise["slug"],)).fetchone()
            ids.append(int(row["id"]))
        return ids

    return run_in_transaction(work, "exercise upsert")


_EXERCISE_COLUMNS = """
    e.id, e.slug, e.module_id, e.title, e.instruction, e.type, e.difficulty,
    e.points, e.estimated_minutes, e.ordre, e.configuration, e.active,
    m.level AS level, m.subject AS subject, m.period AS period, m.active AS module_active
"""


def _exercise_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["configuration"] = _decode_json_field(row["configuration"], {})
    data["active"] = bool(row["active"])
    data["module_active"] = bool(row["module_active"])
    return data


def get_exercise(exercise_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        f"SELECT {_EXERCISE_COLUMNS} FROM exercises e JOIN modules m ON m.id = e.module_id WHERE e.id = ?",
        (int(exercise_id),),
    )
    return _exercise_from_row(rows[0]) if rows else None


def list_active_exercises(level: str, limit: Optional[int] = None) -> list[Dict[str, Any]]:
    """Active exercises of active modules at ``level``, ordered by ``ordre`` then id."""
    sql = (
        f"SELECT {_EXERCISE_COLUMNS} FROM exercises e JOIN modules m ON m.id = e.module_id "
        "WHERE e.active = 1 AND m.active = 1 AND m.level = ? ORDER BY e.ordre ASC, e.id ASC"
    )
    params: list[Any] = [level]
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    return [_exercise_from_row(row) for row in _query(sql, params)]


def list_modules(level: Optional[str] = None) -> list[sqlite3.Row]:
    if level:
        return _query(
            "SELECT id, slug, title, description, level, subject, period, ordre, active "
            "FROM modules WHERE level = ? ORDER BY ordre, id",
            (level,),
        )
    return _query(
        "SELECT id, slug, title, description, level, subject, period, ordre, active "
        "FROM modules ORDER BY level, ordre, id"
    )


# -------------- progressions --------------
_PROGRESSION_COLUMNS = (
    "student_id, exercise_id, status, attempts, successes, success_rate, points, "
    "first_success_at, last_attempt_at, history"
)


def _progression_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    data["history"] = _decode_json_field(row["history"], [])
    return data


def get_progression(student_id: int, exercise_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        f"SELECT {_PROGRESSION_COLUMNS} FROM progressions WHERE student_id = ? AND exercise_id = ?",
        (int(student_id), int(exercise_id)),
    )
    return _progression_from_row(rows[0]) if rows else None


def _progression_filter(
    student_id: int, status: Optional[str], subject: Optional[str]
) -> tuple[str, list[Any]]:
    clauses = ["student_id = ?"]
    params: list[Any] = [int(student_id)]
    if status:
        clauses.append("status = ?")
        params.append(status)
    if subject:
        clauses.append(
            "exercise_id IN (SELECT e.id FROM exercises e JOIN modules m ON m.id = e.module_id "
            "WHERE m.subject = ?)"
        )
        params.append(subject)
    return " AND ".join(clauses), params


def list_progressions(
    student_id: int,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    subject: Optional[str] = None,
) -> list[Dict[str, Any]]:
    where, params = _progression_filter(student_id, status, subject)
    params.extend([int(limit), int(offset)])
    rows = _query(
        f"SELECT {_PROGRESSION_COLUMNS} FROM progressions WHERE {where} "
        "ORDER BY last_attempt_at DESC, exercise_id ASC LIMIT ? OFFSET ?",
        params,
    )
    return [_progression_from_row(row) for row in rows]


def count_progressions(student_id: int, status: Optional[str] = None, subject: Optional[str] = None) -> int:
    where, params = _progression_filter(student_id, status, subject)
    rows = _query(f"SELECT COUNT(*) AS n FROM progressions WHERE {where}", params)
    return int(rows[0]["n"])


def completed_exercise_ids(student_id: int) -> set[int]:
    rows = _query(
        "SELECT exercise_id FROM progressions WHERE student_id = ? AND status IN ('COMPLETED', 'MASTERED')",
        (int(student_id),),
    )
    return {int(row["exercise_id"]) for row in rows}


def _write_progression(con: sqlite3.Connection, record: Mapping[str, Any]) -> None:
    con.execute(
        f"""
        INSERT INTO progressions({_PROGRESSION_COLUMNS})
        VALUES (?,?,?,?,?,?,?,?,?,?)
        ON CONFLICT(student_id, exercise_id) DO UPDATE SET
          status=excluded.status,
          attempts=excluded.attempts,
          successes=excluded.successes,
          success_rate=excluded.success_rate,
          points=excluded.points,
          first_success_at=excluded.first_success_at,
          last_attempt_at=excluded.last_attempt_at,
          history=excluded.history
        """,
        (
            int(record["student_id"]),
            int(record["exercise_id"]),
            record["status"],
            int(record["attempts"]),
            int(record["successes"]),
            float(record["success_rate"]),
            int(record["points"]),
            record.get("first_success_at"),
            record.get("last_attempt_at"),
            json_dumps(list(record.get("history") or [])),
        ),
    )


def save_attempt(
    student_id: int,
    exercise_id: int,
    update: Callable[[Optional[Dict[str, Any]]], Dict[str, Any]],
    *,
    day: date,
    minutes: int,
) -> Dict[str, Any]:
    """Atomically apply ``update`` to the (student, exercise) progression.

    ``update`` receives the stored record (or ``None``) and returns the new
    one. In the same transaction the student's points and the daily session
    aggregate are adjusted by the difference between the two records.
    """
    def work(con: sqlite3.Connection) -> Dict[str, Any]:
        row = con.execute(
            f"SELECT {_PROGRESSION_COLUMNS} FROM progressions WHERE student_id = ? AND exercise_id = ?",
            (int(student_id), int(exercise_id)),
        ).fetchone()
        existing = _progression_from_row(row) if row else None
        record = update(existing)
        _write_progression(con, record)

        gained = int(record["points"]) - int(existing["points"] if existing else 0)
        succeeded = int(record["successes"]) > int(existing["successes"] if existing else 0)
        if gained:
            con.execute(
                "UPDATE students SET total_points = total_points + ? WHERE id = ?",
                (gained, int(student_id)),
            )
        con.execute(
            """
            INSERT INTO sessions(student_id, day, exercises_attempted, exercises_succeeded, points, minutes)
            VALUES (?, ?, 1, ?, ?, ?)
            ON CONFLICT(student_id, day) DO UPDATE SET
              exercises_attempted = exercises_attempted + 1,
              exercises_succeeded = exercises_succeeded + excluded.exercises_succeeded,
              points = points + excluded.points,
              minutes = minutes + excluded.minutes
            """,
            (int(student_id), day.isoformat(), 1 if succeeded else 0, gained, int(minutes)),
        )
        return record

    return run_in_transaction(work, "attempt upsert")


# -------------- sessions --------------
def list_sessions(student_id: int, since: date) -> list[sqlite3.Row]:
    return _query(
        """
        SELECT student_id, day, exercises_attempted, exercises_succeeded, points, minutes
        FROM sessions WHERE student_id = ? AND day >= ? ORDER BY day DESC
        """,
        (int(student_id), since.isoformat()),
    )


# -------------- revisions --------------
_REVISION_COLUMNS = (
    "student_id, exercise_id, next_review, interval_days, review_count, difficulty_factor, last_review"
)


def get_revision(student_id: int, exercise_id: int) -> Optional[sqlite3.Row]:
    rows = _query(
        f"SELECT {_REVISION_COLUMNS} FROM revisions WHERE student_id = ? AND exercise_id = ?",
        (int(student_id), int(exercise_id)),
    )
    return rows[0] if rows else None


def upsert_revision(
    student_id: int,
    exercise_id: int,
    next_review: datetime,
    interval_days: int,
    review_count: int,
    difficulty_factor: float,
    last_review: Optional[datetime] = None,
) -> None:
    _exec(
        f"""
        INSERT INTO revisions({_REVISION_COLUMNS})
        VALUES (?,?,?,?,?,?,?)
        ON CONFLICT(student_id, exercise_id) DO UPDATE SET
          next_review=excluded.next_review,
          interval_days=excluded.interval_days,
          review_count=excluded.review_count,
          difficulty_factor=excluded.difficulty_factor,
          last_review=excluded.last_review
        """,
        (
            int(student_id),
            int(exercise_id),
            _iso(next_review),
            int(interval_days),
            int(review_count),
            float(difficulty_factor),
            _iso(last_review),
        ),
    )


def list_revisions(student_id: int) -> list[sqlite3.Row]:
    return _query(
        f"SELECT {_REVISION_COLUMNS} FROM revisions WHERE student_id = ? ORDER BY next_review ASC, exercise_id ASC",
        (int(student_id),),
    )


def count_rows(table: str) -> int:
    if table not in {"students", "modules", "exercises", "progressions", "revisions", "sessions"}:
        raise ValueError(f"Unknown table: {table}")
    rows = _query(f"SELECT COUNT(*) AS n FROM {table}")
    return int(rows[0]["n"])


def close() -> None:
    _pool.close_all()


def bulk_exercise_lookup(exercise_ids: Sequence[int]) -> Dict[int, Dict[str, Any]]:
    ids = [int(exercise_id) for exercise_id in exercise_ids]
    if not ids:
        return {}
    placeholders = ",".join("?" for _ in ids)
    rows = _query(
        f"SELECT {_EXERCISE_COLUMNS} FROM exercises e JOIN modules m ON m.id = e.module_id "
        f"WHERE e.id IN ({placeholders})",
        ids,
    )
    return {int(row["id"]): _exercise_from_row(row) for row in rows}
