import copy
import random
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import CBTConfig  # noqa: E402
from engine import ExamEngine  # noqa: E402
from errors import StoreUnavailable  # noqa: E402


class FakeStore:
    """Dict-backed stand-in for store.RecordStore (same method surface)."""

    def __init__(self):
        self.tables = {k: {} for k in ("profiles", "question_banks", "questions", "exams", "exam_attempts")}
        self.fail_next = {}  # method name -> remaining failures
        self.calls = []

    def _maybe_fail(self, op):
        self.calls.append(op)
        n = self.fail_next.get(op, 0)
        if n:
            self.fail_next[op] = n - 1
            raise StoreUnavailable(f"simulated {op} failure")

    @staticmethod
    def _matches(row, filters):
        for k, v in (filters or {}).items():
            if isinstance(v, (list, tuple, set)):
                if row.get(k) not in v:
                    return False
            elif row.get(k) != v:
                return False
        return True

    def list(self, kind, filters=None, order_by=None, limit=None):
        self._maybe_fail("list")
        rows = [copy.deepcopy(r) for r in self.tables[kind].values() if self._matches(r, filters)]
        items = [order_by] if isinstance(order_by, str) else list(order_by or [])
        for item in reversed(items):
            col = item.lstrip("-")
            rows.sort(key=lambda r: (r.get(col) is None, r.get(col) if r.get(col) is not None else 0),
                      reverse=item.startswith("-"))
        return rows[:limit] if limit is not None else rows

    def count(self, kind, filters=None):
        self._maybe_fail("count")
        return sum(1 for r in self.tables[kind].values() if self._matches(r, filters))

    def get(self, kind, record_id):
        self._maybe_fail("get")
        row = self.tables[kind].get(str(record_id))
        return copy.deepcopy(row) if row else None

    def insert(self, kind, record):
        self._maybe_fail("insert")
        rec = copy.deepcopy(record)
        rec.setdefault("id", uuid.uuid4().hex)
        rec.setdefault("created_at", datetime.now(timezone.utc))
        self.tables[kind][str(rec["id"])] = rec
        return str(rec["id"])

    def update(self, kind, record_id, changes, expect=None):
        self._maybe_fail("update")
        row = self.tables[kind].get(str(record_id))
        if row is None or not self._matches(row, expect):
            return None
        row.update(copy.deepcopy(changes))
        return copy.deepcopy(row)

    def delete(self, kind, record_id):
        return self.tables[kind].pop(str(record_id), None) is not None

    def ping(self):
        return True


class FakeClock:
    def __init__(self, start=1_760_000_000.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeTimer:
    def __init__(self, interval, fn):
        self.interval = interval
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.fn()


def _ts(n):
    return datetime(2025, 1, 1, 0, 0, n, tzinfo=timezone.utc)


def seed(store):
    p = store.tables["profiles"]
    p["s1"] = {"id": "s1", "full_name": "Ada Obi", "matric_number": "BSF/001", "field": "science",
               "role": "student", "created_at": _ts(1)}
    p["s2"] = {"id": "s2", "full_name": "Bola Ade", "matric_number": "BSF/002", "field": "science",
               "role": "student", "created_at": _ts(2)}
    p["s3"] = {"id": "s3", "full_name": "Chi Eze", "matric_number": "BSF/003", "field": "art",
               "role": "student", "created_at": _ts(3)}
    p["a1"] = {"id": "a1", "full_name": "Admin", "field": None, "role": "admin", "created_at": _ts(4)}

    store.tables["question_banks"]["b1"] = {"id": "b1", "title": "Physics", "created_at": _ts(1)}
    store.tables["question_banks"]["b2"] = {"id": "b2", "title": "Writing", "created_at": _ts(2)}
    store.tables["question_banks"]["b3"] = {"id": "b3", "title": "Empty", "created_at": _ts(3)}

    q = store.tables["questions"]
    q["q1"] = {"id": "q1", "bank_id": "b1", "question_type": "multiple_choice", "question_text": "Unit of force?",
               "options": ["Newton", "Joule", "Watt"], "correct_answer": "Newton", "points": 2, "created_at": _ts(1)}
    q["q2"] = {"id": "q2", "bank_id": "b1", "question_type": "multiple_choice", "question_text": "Unit of energy?",
               "options": ["Newton", "Joule", "Watt"], "correct_answer": "Joule", "points": 3, "created_at": _ts(2)}
    q["q3"] = {"id": "q3", "bank_id": "b1", "question_type": "multiple_choice", "question_text": "Unit of power?",
               "options": ["Newton", "Joule", "Watt"], "correct_answer": "Watt", "points": 5, "created_at": _ts(3)}
    q["q4"] = {"id": "q4", "bank_id": "b2", "question_type": "true_false", "question_text": "Water is wet.",
               "options": None, "correct_answer": "true", "points": 2, "created_at": _ts(4)}
    q["q5"] = {"id": "q5", "bank_id": "b2", "question_type": "fill_in_gap", "question_text": "H2O is ___.",
               "options": None, "correct_answer": "water", "points": 4, "created_at": _ts(5)}
    q["q6"] = {"id": "q6", "bank_id": "b2", "question_type": "essay", "question_text": "Discuss.",
               "options": None, "correct_answer": "Sample answer", "points": 4, "created_at": _ts(6)}

    e = store.tables["exams"]
    base = {"description": "", "duration_minutes": 30, "passing_score": 50, "number_of_questions": 0,
            "is_active": True}
    e["e1"] = dict(base, id="e1", title="Physics 101", bank_id="b1", field="science", max_attempts=1,
                   created_at=_ts(1))
    e["e2"] = dict(base, id="e2", title="Writing", bank_id="b2", field="science", max_attempts=-1,
                   created_at=_ts(2))
    e["e3"] = dict(base, id="e3", title="Closed", bank_id="b1", field="science", max_attempts=1,
                   is_active=False, created_at=_ts(3))
    e["e4"] = dict(base, id="e4", title="Art history", bank_id="b1", field="art", max_attempts=1,
                   created_at=_ts(4))
    e["e5"] = dict(base, id="e5", title="Nothing yet", bank_id="b3", field="science", max_attempts=1,
                   created_at=_ts(5))
    return store


@pytest.fixture
def store():
    return seed(FakeStore())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return []


@pytest.fixture
def timer_factory(timers):
    def make(interval, fn):
        t = FakeTimer(interval, fn)
        timers.append(t)
        return t
    return make


@pytest.fixture
def config():
    return CBTConfig(secret_key="test", ensure_schema=False)


@pytest.fixture
def engine(store, config, clock, timer_factory):
    return ExamEngine(store, config, rng=random.Random(7), clock=clock, timer_factory=timer_factory)
