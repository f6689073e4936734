import sys
from pathlib import Path

import pytest
from psycopg import OperationalError
from psycopg.types.json import Jsonb

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from errors import StoreUnavailable  # noqa: E402
from store import RecordStore  # noqa: E402


class FakeDB:
    """Records every (sql, params) pair and replays canned rows."""

    def __init__(self, rows=None):
        self.calls = []
        self.rows = rows if rows is not None else []

    def fetch_all(self, sql, params=()):
        self.calls.append((sql, params))
        return self.rows

    def execute_returning(self, sql, params=()):
        self.calls.append((sql, params))
        return self.rows

    def execute(self, sql, params=()):
        self.calls.append((sql, params))


def _store(db):
    return RecordStore({"fetch_all": db.fetch_all, "execute": db.execute,
                        "execute_returning": db.execute_returning})


def test_list_builds_filters_order_and_limit():
    db = FakeDB([{"id": "a1"}])
    rows = _store(db).list("exam_attempts", {"student_id": "s1", "status": ["graded", "submitted"],
                                             "graded_at": None},
                           order_by=["-started_at", "id"], limit=5)
    assert rows == [{"id": "a1"}]
    sql, params = db.calls[0]
    assert sql == ("SELECT * FROM public.exam_attempts WHERE student_id = %s AND status = ANY(%s) "
                   "AND graded_at IS NULL ORDER BY started_at DESC, id ASC LIMIT %s;")
    assert params == ("s1", ["graded", "submitted"], 5)


def test_unknown_column_or_kind_is_rejected():
    store = _store(FakeDB())
    with pytest.raises(ValueError):
        store.list("exams", {"title; DROP TABLE exams": 1})
    with pytest.raises(ValueError):
        store.get("users", "1")


def test_count_and_get():
    db = FakeDB([{"n": 4}])
    assert _store(db).count("profiles", {"role": "student"}) == 4
    assert db.calls[0] == ("SELECT COUNT(*) AS n FROM public.profiles WHERE role = %s;", ("student",))

    db = FakeDB([])
    assert _store(db).get("exams", "e1") is None
    assert db.calls[0] == ("SELECT * FROM public.exams WHERE id = %s;", ("e1",))


def test_insert_wraps_json_columns():
    db = FakeDB([{"id": "att-1"}])
    new_id = _store(db).insert("exam_attempts", {"id": "att-1", "exam_id": "e1", "answers": {},
                                                 "questions": [{"id": "q1"}]})
    assert new_id == "att-1"
    sql, params = db.calls[0]
    assert sql == ("INSERT INTO public.exam_attempts (id, exam_id, answers, questions) "
                   "VALUES (%s, %s, %s, %s) RETURNING id;")
    assert params[:2] == ("att-1", "e1")
    assert isinstance(params[2], Jsonb) and params[2].obj == {}
    assert isinstance(params[3], Jsonb) and params[3].obj == [{"id": "q1"}]


def test_insert_generates_an_id():
    db = FakeDB([])
    new_id = _store(db).insert("question_banks", {"title": "Biology"})
    assert len(new_id) == 32
    assert db.calls[0][1] == ("Biology", new_id)


def test_conditional_update():
    db = FakeDB([])
    result = _store(db).update("exam_attempts", "att-1", {"status": "graded", "score": 7},
                               expect={"status": "in_progress"})
    assert result is None
    assert db.calls[0] == (
        "UPDATE public.exam_attempts SET status = %s, score = %s WHERE id = %s AND status = %s RETURNING *;",
        ("graded", 7, "att-1", "in_progress"),
    )


def test_delete_reports_whether_a_row_went():
    db = FakeDB([{"id": "q1"}])
    assert _store(db).delete("questions", "q1") is True
    assert db.calls[0] == ("DELETE FROM public.questions WHERE id = %s RETURNING id;", ("q1",))


def test_driver_errors_become_store_unavailable():
    def boom(sql, params=()):
        raise OperationalError("connection refused")

    store = RecordStore({"fetch_all": boom, "execute": boom, "execute_returning": boom})
    with pytest.raises(StoreUnavailable) as exc:
        store.get("exams", "e1")
    assert exc.value.status_code == 503
    with pytest.raises(StoreUnavailable):
        store.ping()


def test_ensure_schema_runs_one_statement_per_call():
    db = FakeDB()
    _store(db).ensure_schema()
    sqls = [sql for sql, _ in db.calls]
    assert len(sqls) == 7
    assert all(s.count(";") == 1 and s.endswith(";") for s in sqls)
    assert sqls[0].startswith("CREATE TABLE IF NOT EXISTS public.profiles")
