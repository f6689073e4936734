# store.py
# -----------------------------------------------------------------------------
# Generic record store over the five CBT tables.
#   list(kind, filters, order_by, limit) / get / insert / update / delete
# update(..., expect={...}) is a conditional write (UPDATE ... WHERE id AND col=val)
# used as the compare-and-swap guard on attempt submission.
# Identifiers are whitelisted per kind; values always travel as %s params.
# -----------------------------------------------------------------------------

import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import psycopg
from psycopg.types.json import Jsonb

from errors import StoreUnavailable

TABLES: Dict[str, str] = {
    "profiles": "public.profiles",
    "question_banks": "public.question_banks",
    "questions": "public.questions",
    "exams": "public.exams",
    "exam_attempts": "public.exam_attempts",
}

COLUMNS: Dict[str, Sequence[str]] = {
    "profiles": ("id", "full_name", "matric_number", "field", "role", "created_at"),
    "question_banks": ("id", "title", "description", "created_by", "created_at"),
    "questions": ("id", "bank_id", "question_type", "question_text", "options",
                  "correct_answer", "points", "created_at"),
    "exams": ("id", "title", "description", "bank_id", "field", "duration_minutes",
              "passing_score", "number_of_questions", "max_attempts", "is_active",
              "created_by", "created_at"),
    "exam_attempts": ("id", "exam_id", "student_id", "started_at", "submitted_at", "graded_at",
                      "time_remaining", "answers", "questions", "score", "total_points", "status"),
}

JSON_COLUMNS = {"options", "answers", "questions"}

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS public.profiles (
    id            TEXT PRIMARY KEY,
    full_name     TEXT,
    matric_number TEXT,
    field         TEXT,
    role          TEXT NOT NULL DEFAULT 'student',
    created_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS public.question_banks (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    description TEXT,
    created_by  TEXT,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS public.questions (
    id             TEXT PRIMARY KEY,
    bank_id        TEXT NOT NULL REFERENCES public.question_banks(id) ON DELETE CASCADE,
    question_type  TEXT NOT NULL,
    question_text  TEXT NOT NULL,
    options        JSONB,
    correct_answer TEXT,
    points         INTEGER NOT NULL DEFAULT 1 CHECK (points > 0),
    created_at     TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS public.exams (
    id                  TEXT PRIMARY KEY,
    title               TEXT NOT NULL,
    description         TEXT,
    bank_id             TEXT NOT NULL REFERENCES public.question_banks(id) ON DELETE CASCADE,
    field               TEXT NOT NULL,
    duration_minutes    INTEGER NOT NULL CHECK (duration_minutes > 0),
    passing_score       NUMERIC NOT NULL DEFAULT 50,
    number_of_questions INTEGER NOT NULL DEFAULT 0,
    max_attempts        INTEGER NOT NULL DEFAULT 1,
    is_active           BOOLEAN NOT NULL DEFAULT true,
    created_by          TEXT,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS public.exam_attempts (
    id             TEXT PRIMARY KEY,
    exam_id        TEXT NOT NULL REFERENCES public.exams(id) ON DELETE CASCADE,
    student_id     TEXT NOT NULL,
    started_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
    submitted_at   TIMESTAMPTZ,
    graded_at      TIMESTAMPTZ,
    time_remaining INTEGER,
    answers        JSONB NOT NULL DEFAULT '{}'::jsonb,
    questions      JSONB NOT NULL DEFAULT '[]'::jsonb,
    score          NUMERIC NOT NULL DEFAULT 0,
    total_points   INTEGER NOT NULL DEFAULT 0,
    status         TEXT NOT NULL DEFAULT 'in_progress'
);
CREATE INDEX IF NOT EXISTS exam_attempts_student_exam_idx
    ON public.exam_attempts (student_id, exam_id);
CREATE INDEX IF NOT EXISTS exam_attempts_status_idx
    ON public.exam_attempts (status);
"""

OrderBy = Union[str, Iterable[str], None]


class RecordStore:
    """
    deps:
      - fetch_all(sql, params) -> list[dict]
      - execute_returning(sql, params) -> list[dict]
      - execute(sql, params)
    """

    def __init__(self, deps: Dict[str, Callable]):
        self._fetch_all: Callable = deps["fetch_all"]
        self._execute_returning: Callable = deps["execute_returning"]
        self._execute: Callable = deps["execute"]

    # ---------------------------- identifiers --------------------------------
    @staticmethod
    def _table(kind: str) -> str:
        try:
            return TABLES[kind]
        except KeyError:
            raise ValueError(f"unknown record kind {kind!r}") from None

    @staticmethod
    def _column(kind: str, col: str) -> str:
        if col not in COLUMNS[kind]:
            raise ValueError(f"unknown column {col!r} for {kind}")
        return col

    @staticmethod
    def _value(col: str, v: Any) -> Any:
        if col in JSON_COLUMNS and v is not None:
            return Jsonb(v)
        return v

    def _order_sql(self, kind: str, order_by: OrderBy) -> str:
        if not order_by:
            return ""
        items = [order_by] if isinstance(order_by, str) else list(order_by)
        parts = []
        for item in items:
            desc = item.startswith("-")
            col = self._column(kind, item.lstrip("-"))
            parts.append(f"{col} {'DESC' if desc else 'ASC'}")
        return " ORDER BY " + ", ".join(parts)

    def _where_sql(self, kind: str, filters: Optional[Dict[str, Any]]):
        clauses, params = [], []
        for col, v in (filters or {}).items():
            c = self._column(kind, col)
            if v is None:
                clauses.append(f"{c} IS NULL")
            elif isinstance(v, (list, tuple, set)):
                clauses.append(f"{c} = ANY(%s)")
                params.append(list(v))
            else:
                clauses.append(f"{c} = %s")
                params.append(v)
        return ((" WHERE " + " AND ".join(clauses)) if clauses else ""), params

    # ------------------------------- guarded I/O ------------------------------
    def _run(self, fn: Callable, sql: str, params: Sequence[Any]):
        try:
            return fn(sql, tuple(params))
        except (psycopg.Error, RuntimeError, OSError) as e:
            print(f"[store] query failed: {e}")
            raise StoreUnavailable(f"Record store unavailable: {e}") from e

    # ------------------------------- primitives -------------------------------
    def list(self, kind: str, filters: Optional[Dict[str, Any]] = None,
             order_by: OrderBy = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        where, params = self._where_sql(kind, filters)
        sql = f"SELECT * FROM {self._table(kind)}{where}{self._order_sql(kind, order_by)}"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))
        return list(self._run(self._fetch_all, sql + ";", params) or [])

    def count(self, kind: str, filters: Optional[Dict[str, Any]] = None) -> int:
        where, params = self._where_sql(kind, filters)
        rows = self._run(self._fetch_all, f"SELECT COUNT(*) AS n FROM {self._table(kind)}{where};", params)
        return int(((rows or [{}])[0]).get("n") or 0)

    def get(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        rows = self._run(self._fetch_all, f"SELECT * FROM {self._table(kind)} WHERE id = %s;", [str(record_id)])
        return rows[0] if rows else None

    def insert(self, kind: str, record: Dict[str, Any]) -> str:
        rec = dict(record)
        rec.setdefault("id", uuid.uuid4().hex)
        cols = [self._column(kind, c) for c in rec]
        params = [self._value(c, rec[c]) for c in cols]
        sql = (f"INSERT INTO {self._table(kind)} ({', '.join(cols)}) "
               f"VALUES ({', '.join(['%s'] * len(cols))}) RETURNING id;")
        rows = self._run(self._execute_returning, sql, params)
        return str(rows[0]["id"]) if rows else str(rec["id"])

    def update(self, kind: str, record_id: str, changes: Dict[str, Any],
               expect: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Returns the updated row, or None when no row matched id (+ expect)."""
        if not changes:
            raise ValueError("update needs at least one column")
        sets, params = [], []
        for col, v in changes.items():
            sets.append(f"{self._column(kind, col)} = %s")
            params.append(self._value(col, v))
        where, where_params = self._where_sql(kind, dict({"id": str(record_id)}, **(expect or {})))
        sql = f"UPDATE {self._table(kind)} SET {', '.join(sets)}{where} RETURNING *;"
        rows = self._run(self._execute_returning, sql, params + where_params)
        return rows[0] if rows else None

    def delete(self, kind: str, record_id: str) -> bool:
        rows = self._run(self._execute_returning,
                         f"DELETE FROM {self._table(kind)} WHERE id = %s RETURNING id;", [str(record_id)])
        return bool(rows)

    # ------------------------------- maintenance ------------------------------
    def ensure_schema(self) -> None:
        # One statement per execute: extended protocol rejects multi-statement strings
        for stmt in SCHEMA_SQL.split(";"):
            if stmt.strip():
                self._run(self._execute, stmt.strip() + ";", [])

    def ping(self) -> bool:
        rows = self._run(self._fetch_all, "SELECT 1 AS ok;", [])
        return bool(rows)
