# scoring.py
# -----------------------------------------------------------------------------
# Scoring engine.
# - Objective items: case-insensitive exact string match, all-or-nothing points
# - Essays: 0 at submit time; attempt waits in 'submitted' for a grader
# - Percentage: legacy heuristic tolerating rows whose score is already a percent
# -----------------------------------------------------------------------------

from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

from errors import InvalidEssayScore
from models import STATUS_GRADED, STATUS_SUBMITTED, ExamAttempt, Question, answer_text


class ObjectiveScore(NamedTuple):
    score: float
    total_points: int
    has_essay: bool

    @property
    def status(self) -> str:
        return status_for(self.has_essay)


def is_correct(question: Question, answer: Any) -> bool:
    if question.is_essay:
        return False
    given = answer_text(answer)
    expected = question.correct_answer
    if given is None or expected is None:
        return False
    return given.lower() == str(expected).lower()


def score_objective(questions: Iterable[Question], answers: Mapping[str, Any]) -> ObjectiveScore:
    score = 0
    total_points = 0
    has_essay = False
    for q in questions:
        total_points += q.points
        if q.is_essay:
            has_essay = True
            continue
        if is_correct(q, answers.get(q.id)):
            score += q.points
    return ObjectiveScore(score, total_points, has_essay)


def status_for(has_essay: bool) -> str:
    return STATUS_SUBMITTED if has_essay else STATUS_GRADED


def _essay_value(raw: Any, question: Question) -> float:
    if isinstance(raw, bool):
        raise InvalidEssayScore(f"Essay score for {question.id} is not a number.",
                                question_id=question.id, value=raw)
    try:
        val = float(raw)
    except (TypeError, ValueError):
        raise InvalidEssayScore(f"Essay score for {question.id} is not a number.",
                                question_id=question.id, value=raw) from None
    if val != val or not (0 <= val <= question.points):
        raise InvalidEssayScore(
            f"Essay score for {question.id} must be between 0 and {question.points}.",
            question_id=question.id, value=raw, max_points=question.points,
        )
    return val


def validate_essay_scores(attempt: ExamAttempt, essay_scores: Mapping[str, Any]) -> Dict[str, float]:
    """Check every grade before anything is merged; raises InvalidEssayScore."""
    out: Dict[str, float] = {}
    for qid, raw in (essay_scores or {}).items():
        q = attempt.question(str(qid))
        if q is None or not q.is_essay:
            raise InvalidEssayScore(f"{qid} is not an essay question of this attempt.", question_id=str(qid))
        out[q.id] = _essay_value(raw, q)
    return out


def merge_essay_grades(attempt: ExamAttempt, essay_scores: Mapping[str, Any]) -> float:
    """Objective component already stored on the attempt + grader points."""
    checked = validate_essay_scores(attempt, essay_scores)
    final = attempt.score + sum(checked.values())
    if isinstance(final, float) and final.is_integer():
        final = int(final)
    return final


def normalize_percentage(score: Any, total_points: Any) -> float:
    try:
        s = float(score)
    except (TypeError, ValueError):
        s = 0.0
    try:
        t = float(total_points) if total_points is not None else 0.0
    except (TypeError, ValueError):
        t = 0.0
    if t > 0:
        if s > t and s <= 100:
            return s
        return (s / t) * 100
    return s


def display_percentage(score: Any, total_points: Any) -> float:
    return round(normalize_percentage(score, total_points), 1)


def is_passed(percentage: float, passing_score: Optional[float]) -> bool:
    return round(percentage, 1) >= float(passing_score if passing_score is not None else 50)


def essay_questions(questions: Iterable[Question]) -> List[Question]:
    return [q for q in questions if q.is_essay]
