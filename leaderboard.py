# leaderboard.py
# -----------------------------------------------------------------------------
# Progress aggregation from attempt history.
# - average_score: mean normalized percentage over GRADED attempts only
# - total_exams_taken: every attempt row, whatever its status (used everywhere)
# - ordering: stable sort, descending average; rank = 1 + index, None = unranked
# -----------------------------------------------------------------------------

from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional

from models import STATUS_GRADED, STATUS_SUBMITTED, ExamAttempt, Profile
from scoring import normalize_percentage


@dataclass
class LeaderboardEntry:
    student_id: str
    full_name: str
    matric_number: str
    average_score: float
    attempts_count: int
    graded_count: int
    total_points_earned: float

    def to_dict(self, rank: Optional[int] = None) -> Dict[str, Any]:
        out = asdict(self)
        out["average_score"] = round(self.average_score, 1)
        if rank is not None:
            out["rank"] = rank
        return out


def graded_only(attempts: Iterable[ExamAttempt]) -> List[ExamAttempt]:
    return [a for a in attempts if a.status == STATUS_GRADED]


def average_score(attempts: Iterable[ExamAttempt]) -> float:
    graded = graded_only(attempts)
    if not graded:
        return 0.0
    return sum(normalize_percentage(a.score, a.total_points) for a in graded) / len(graded)


def total_exams_taken(attempts: Iterable[ExamAttempt]) -> int:
    return len(list(attempts))


def build_leaderboard(students: Iterable[Profile], attempts: Iterable[ExamAttempt],
                      limit: Optional[int] = None) -> List[LeaderboardEntry]:
    by_student: Dict[str, List[ExamAttempt]] = {}
    for a in attempts:
        by_student.setdefault(a.student_id, []).append(a)

    entries: List[LeaderboardEntry] = []
    for s in students:
        mine = by_student.get(s.id, [])
        graded = graded_only(mine)
        entries.append(LeaderboardEntry(
            student_id=s.id,
            full_name=s.full_name or "Unknown Student",
            matric_number=s.matric_number or "",
            average_score=average_score(mine),
            attempts_count=total_exams_taken(mine),
            graded_count=len(graded),
            total_points_earned=sum(a.score for a in graded),
        ))
    # sorted() is stable: ties keep the order students were given in
    entries = sorted(entries, key=lambda e: -e.average_score)
    if limit is not None and limit >= 0:
        entries = entries[:limit]
    return entries


def rank_of(student_id: str, leaderboard: List[LeaderboardEntry]) -> Optional[int]:
    for i, e in enumerate(leaderboard):
        if e.student_id == str(student_id):
            return i + 1
    return None


def student_stats(student_id: str, attempts: Iterable[ExamAttempt],
                  leaderboard: List[LeaderboardEntry]) -> Dict[str, Any]:
    mine = [a for a in attempts if a.student_id == str(student_id)]
    return {
        "student_id": str(student_id),
        "total_exams_taken": total_exams_taken(mine),
        "average_score": round(average_score(mine), 1),
        "pending_grading": sum(1 for a in mine if a.status == STATUS_SUBMITTED),
        "rank": rank_of(student_id, leaderboard),
    }
