# models.py
# -----------------------------------------------------------------------------
# Records for the five stored kinds + typed answers.
# Rows come back from psycopg as dicts (dict_row); every record round-trips
# through from_row()/to_row() so the store stays a plain dict store.
# -----------------------------------------------------------------------------

from dataclasses import dataclass, field as dc_field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from errors import InvalidAnswer

STATUS_IN_PROGRESS = "in_progress"
STATUS_SUBMITTED = "submitted"
STATUS_GRADED = "graded"

UNLIMITED_ATTEMPTS = -1


def _int(v: Any, default: int = 0) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _num(v: Any, default: float = 0.0) -> float:
    # Stored score may be int, numeric (Decimal) or text
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    return int(f) if f.is_integer() else f


# ------------------------------- profiles -----------------------------------
@dataclass
class Profile:
    id: str
    full_name: str = ""
    matric_number: str = ""
    field: str = ""
    role: str = "student"
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        return cls(
            id=str(row["id"]),
            full_name=row.get("full_name") or "",
            matric_number=row.get("matric_number") or "",
            field=(row.get("field") or "").lower(),
            role=row.get("role") or "student",
            created_at=row.get("created_at"),
        )


# ------------------------------- questions ----------------------------------
@dataclass
class QuestionBank:
    id: str
    title: str = ""
    description: str = ""
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QuestionBank":
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            description=row.get("description") or "",
            created_at=row.get("created_at"),
        )


@dataclass
class Question:
    id: str
    bank_id: str
    question_type: str
    question_text: str
    points: int = 1
    options: List[str] = dc_field(default_factory=list)
    correct_answer: Optional[str] = None

    @property
    def is_essay(self) -> bool:
        return self.question_type == "essay"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Question":
        return cls(
            id=str(row["id"]),
            bank_id=str(row.get("bank_id") or ""),
            question_type=row.get("question_type") or "",
            question_text=row.get("question_text") or "",
            points=_int(row.get("points"), 1),
            options=list(row.get("options") or []),
            correct_answer=row.get("correct_answer"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bank_id": self.bank_id,
            "question_type": self.question_type,
            "question_text": self.question_text,
            "points": self.points,
            "options": list(self.options) if self.question_type == "multiple_choice" else None,
            "correct_answer": self.correct_answer,
        }

    def public(self) -> Dict[str, Any]:
        """Shape sent to the student while the attempt is open (no answer key)."""
        out = self.to_row()
        out.pop("correct_answer", None)
        return out


# --------------------------------- exams ------------------------------------
@dataclass
class Exam:
    id: str
    title: str
    bank_id: str
    field: str
    duration_minutes: int
    passing_score: float = 50
    number_of_questions: int = 0
    max_attempts: int = 1
    is_active: bool = True
    description: str = ""
    created_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> int:
        return int(self.duration_minutes) * 60

    @property
    def unlimited_attempts(self) -> bool:
        return self.max_attempts == UNLIMITED_ATTEMPTS

    @classmethod
    def from_row(cls, row: Dict[str, Any], default_passing_score: float = 50) -> "Exam":
        passing = row.get("passing_score")
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            description=row.get("description") or "",
            bank_id=str(row.get("bank_id") or ""),
            field=(row.get("field") or "").lower(),
            duration_minutes=_int(row.get("duration_minutes"), 60),
            passing_score=_num(passing) if passing is not None else default_passing_score,
            number_of_questions=_int(row.get("number_of_questions"), 0),
            # 0/NULL reads as a single attempt
            max_attempts=_int(row.get("max_attempts"), 0) or 1,
            is_active=bool(row.get("is_active")),
            created_at=row.get("created_at"),
        )

    def public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "field": self.field,
            "duration_minutes": self.duration_minutes,
            "passing_score": self.passing_score,
            "number_of_questions": self.number_of_questions,
            "max_attempts": self.max_attempts,
        }


# -------------------------------- attempts ----------------------------------
@dataclass
class ExamAttempt:
    id: str
    exam_id: str
    student_id: str
    status: str = STATUS_IN_PROGRESS
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None
    time_remaining: Optional[int] = None
    answers: Dict[str, str] = dc_field(default_factory=dict)
    score: float = 0
    total_points: int = 0
    questions: List[Question] = dc_field(default_factory=list)

    @property
    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == str(question_id):
                return q
        return None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ExamAttempt":
        raw_answers = row.get("answers") or {}
        return cls(
            id=str(row["id"]),
            exam_id=str(row.get("exam_id") or ""),
            student_id=str(row.get("student_id") or ""),
            status=row.get("status") or STATUS_IN_PROGRESS,
            started_at=row.get("started_at"),
            submitted_at=row.get("submitted_at"),
            graded_at=row.get("graded_at"),
            time_remaining=row.get("time_remaining"),
            answers={str(k): "" if v is None else str(v) for k, v in raw_answers.items()},
            score=_num(row.get("score")),
            total_points=_int(row.get("total_points")),
            questions=[Question.from_row(q) for q in (row.get("questions") or [])],
        )


# ------------------------------ typed answers --------------------------------
@dataclass(frozen=True)
class MultipleChoiceAnswer:
    choice: str

    def as_text(self) -> str:
        return self.choice


@dataclass(frozen=True)
class TrueFalseAnswer:
    value: bool

    def as_text(self) -> str:
        return "true" if self.value else "false"


@dataclass(frozen=True)
class FillInGapAnswer:
    text: str

    def as_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class EssayAnswer:
    text: str

    def as_text(self) -> str:
        return self.text


Answer = Union[MultipleChoiceAnswer, TrueFalseAnswer, FillInGapAnswer, EssayAnswer]


def make_answer(question: Question, value: Any) -> Answer:
    """Wrap a raw submitted value in the answer type matching the question."""
    if value is None:
        raise InvalidAnswer("answer value is required", question_id=question.id)
    qt = question.question_type
    if qt == "true_false":
        if isinstance(value, bool):
            return TrueFalseAnswer(value)
        s = str(value).strip().lower()
        if s not in ("true", "false"):
            raise InvalidAnswer("true_false answers must be 'true' or 'false'", question_id=question.id)
        return TrueFalseAnswer(s == "true")
    if isinstance(value, (dict, list)):
        raise InvalidAnswer("answer must be a string", question_id=question.id)
    if qt == "multiple_choice":
        return MultipleChoiceAnswer(str(value))
    if qt == "fill_in_gap":
        return FillInGapAnswer(str(value))
    return EssayAnswer(str(value))


def answer_text(value: Any) -> Optional[str]:
    """String form used for comparison; plain strings pass through unchanged."""
    if value is None:
        return None
    if isinstance(value, (MultipleChoiceAnswer, TrueFalseAnswer, FillInGapAnswer, EssayAnswer)):
        return value.as_text()
    return str(value)
