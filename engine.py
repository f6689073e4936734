# engine.py
# -----------------------------------------------------------------------------
# Exam session engine (attempt lifecycle).
#   start_attempt -> in_progress (frozen question snapshot + ledger + countdown)
#   submit_attempt -> submitted (has essay) | graded (objective only)
#   grade_essays   -> submitted -> graded
# Submission is accepted at most once: per-session lock in process, and a store
# update conditioned on status='in_progress' across processes. A losing call is
# a silent no-op returning the stored result.
# Every recorded answer is written to the attempt row, so any worker can
# rebuild the ledger and score the attempt.
# -----------------------------------------------------------------------------

import random
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from config import CBTConfig
from countdown import AttemptCountdown
from errors import (
    AttemptClosed, AttemptLimitExceeded, ExamNotAvailable, GradingNotAllowed, NoQuestionsAvailable,
    NotFound,
)
from leaderboard import build_leaderboard, student_stats
from ledger import AnswerLedger
from models import (
    STATUS_GRADED, STATUS_IN_PROGRESS, STATUS_SUBMITTED,
    Exam, ExamAttempt, Profile, Question, QuestionBank,
)
from scoring import (
    display_percentage, essay_questions, is_correct, is_passed, merge_essay_grades,
    score_objective,
)
from selector import select_questions
from store import RecordStore


def _as_datetime(v: Any) -> Optional[datetime]:
    if v is None:
        return None
    if isinstance(v, datetime):
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)
    try:
        d = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
    except ValueError:
        return None
    return d if d.tzinfo else d.replace(tzinfo=timezone.utc)


class ExamSession:
    """Process-local state of one in-progress attempt."""

    def __init__(self, attempt: ExamAttempt, countdown: AttemptCountdown):
        self.attempt_id = attempt.id
        self.student_id = attempt.student_id
        self.ledger = AnswerLedger(attempt.questions, attempt.answers)
        self.countdown = countdown
        self.lock = threading.Lock()
        self.result: Optional[Dict[str, Any]] = None


class ExamEngine:
    def __init__(self, store: RecordStore, config: Optional[CBTConfig] = None,
                 rng: Optional[random.Random] = None,
                 clock: Callable[[], float] = time.time,
                 timer_factory: Callable[..., threading.Timer] = threading.Timer):
        self.store = store
        self.config = config or CBTConfig()
        self._rng = rng
        self._clock = clock
        self._timer_factory = timer_factory
        self._sessions: Dict[str, ExamSession] = {}
        self._sessions_lock = threading.Lock()

    # ------------------------------- loaders ----------------------------------
    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), timezone.utc)

    def get_exam(self, exam_id: str) -> Exam:
        row = self.store.get("exams", exam_id)
        if not row:
            raise NotFound("Exam not found.", exam_id=str(exam_id))
        return Exam.from_row(row, self.config.default_passing_score)

    def get_attempt(self, attempt_id: str) -> ExamAttempt:
        row = self.store.get("exam_attempts", attempt_id)
        if not row:
            raise NotFound("Attempt not found.", attempt_id=str(attempt_id))
        return ExamAttempt.from_row(row)

    def get_bank(self, bank_id: str) -> Optional[QuestionBank]:
        row = self.store.get("question_banks", bank_id)
        return QuestionBank.from_row(row) if row else None

    def get_profile(self, profile_id: str) -> Profile:
        row = self.store.get("profiles", profile_id)
        if not row:
            raise NotFound("Profile not found.", profile_id=str(profile_id))
        return Profile.from_row(row)

    def _owned_attempt(self, attempt_id: str, student_id: Optional[str]) -> ExamAttempt:
        attempt = self.get_attempt(attempt_id)
        if student_id is not None and attempt.student_id != str(student_id):
            # Do not leak other students' attempt ids
            raise NotFound("Attempt not found.", attempt_id=str(attempt_id))
        return attempt

    def _student_attempts(self, student_id: str, exam_id: Optional[str] = None) -> List[ExamAttempt]:
        filters = {"student_id": str(student_id)}
        if exam_id is not None:
            filters["exam_id"] = str(exam_id)
        rows = self.store.list("exam_attempts", filters, order_by="-started_at")
        return [ExamAttempt.from_row(r) for r in rows]

    # ------------------------------- sessions ---------------------------------
    def _deadline(self, attempt: ExamAttempt, exam: Exam) -> float:
        started = _as_datetime(attempt.started_at) or self._now()
        return started.timestamp() + exam.duration_seconds

    def _open_session(self, attempt: ExamAttempt, exam: Exam) -> ExamSession:
        with self._sessions_lock:
            s = self._sessions.get(attempt.id)
            if s is not None:
                return s
            countdown = AttemptCountdown(
                attempt.id, self._deadline(attempt, exam), self._autosubmit,
                clock=self._clock, timer_factory=self._timer_factory,
            )
            s = ExamSession(attempt, countdown)
            self._sessions[attempt.id] = s
        if self.config.autosubmit:
            countdown.start()
        return s

    def _close_session(self, attempt_id: str) -> None:
        with self._sessions_lock:
            s = self._sessions.pop(attempt_id, None)
        if s is not None:
            s.countdown.cancel()

    def active_session(self, attempt_id: str) -> Optional[ExamSession]:
        return self._sessions.get(str(attempt_id))

    def shutdown(self) -> None:
        """Cancel every pending countdown (process teardown)."""
        with self._sessions_lock:
            sessions, self._sessions = list(self._sessions.values()), {}
        for s in sessions:
            s.countdown.cancel()

    def _autosubmit(self, attempt_id: str) -> None:
        result = self.submit_attempt(attempt_id, time_remaining=0)
        print(f"[exam] autosubmitted {attempt_id}: status={result['status']} accepted={result['accepted']}")

    def _expire_if_overdue(self, attempt: ExamAttempt, exam: Exam) -> bool:
        """Lazy deadline check for attempts whose timer is gone (restart, other worker)."""
        if attempt.status != STATUS_IN_PROGRESS:
            return False
        if self._clock() < self._deadline(attempt, exam):
            return False
        self.submit_attempt(attempt.id, time_remaining=0)
        return True

    # ------------------------------- listing ----------------------------------
    def available_exams(self, student: Profile) -> List[Dict[str, Any]]:
        if not student.field:
            return []
        rows = self.store.list("exams", {"is_active": True, "field": student.field}, order_by="-created_at")
        attempts = self._student_attempts(student.id)
        out: List[Dict[str, Any]] = []
        for r in rows:
            exam = Exam.from_row(r, self.config.default_passing_score)
            mine = [a for a in attempts if a.exam_id == exam.id]
            item = exam.public()
            item["attempts_used"] = len(mine)
            item["can_take"] = exam.unlimited_attempts or len(mine) < exam.max_attempts
            item["has_completed"] = any(a.status in (STATUS_SUBMITTED, STATUS_GRADED) for a in mine)
            out.append(item)
        return out

    # ------------------------------- lifecycle --------------------------------
    def start_attempt(self, student: Profile, exam: Exam) -> Dict[str, Any]:
        if not exam.is_active or not student.field or exam.field != student.field:
            raise ExamNotAvailable("This exam is not available to you.", exam_id=exam.id)

        used = self.store.count("exam_attempts", {"exam_id": exam.id, "student_id": student.id})
        if not exam.unlimited_attempts and used >= exam.max_attempts:
            raise AttemptLimitExceeded(
                f"Attempt limit reached ({exam.max_attempts}).",
                exam_id=exam.id, attempts_used=used, max_attempts=exam.max_attempts,
            )

        # Read the bank now, not at exam creation time
        bank = self.get_bank(exam.bank_id)
        if bank is None:
            raise NoQuestionsAvailable(
                "This exam has no question bank. Please contact the admin.",
                exam_id=exam.id, bank_id=exam.bank_id,
            )
        pool = [Question.from_row(r) for r in
                self.store.list("questions", {"bank_id": bank.id}, order_by="created_at")]
        questions = select_questions(pool, exam, self._rng)

        started_at = self._now()
        attempt_id = self.store.insert("exam_attempts", {
            "exam_id": exam.id,
            "student_id": student.id,
            "started_at": started_at,
            "answers": {},
            "questions": [q.to_row() for q in questions],
            "score": 0,
            "total_points": 0,
            "status": STATUS_IN_PROGRESS,
        })
        attempt = ExamAttempt(id=attempt_id, exam_id=exam.id, student_id=student.id,
                              started_at=started_at, questions=questions)
        session = self._open_session(attempt, exam)
        print(f"[exam] started attempt {attempt_id} exam={exam.id} student={student.id} "
              f"questions={len(questions)} attempt_no={used + 1}")
        return {
            "attempt_id": attempt_id,
            "exam": exam.public(),
            "questions": [q.public() for q in questions],
            "duration_seconds": exam.duration_seconds,
            "time_remaining": session.countdown.remaining(),
        }

    def _live_session(self, attempt: ExamAttempt) -> ExamSession:
        exam = self.get_exam(attempt.exam_id)
        if self._expire_if_overdue(attempt, exam):
            raise AttemptClosed("Time is up; the attempt was submitted.", attempt_id=attempt.id)
        return self._open_session(attempt, exam)

    def record_answer(self, attempt_id: str, question_id: str, value: Any,
                      student_id: Optional[str] = None) -> Dict[str, Any]:
        return self.record_answers(attempt_id, {question_id: value}, student_id=student_id)

    def record_answers(self, attempt_id: str, answers: Mapping[str, Any],
                       student_id: Optional[str] = None) -> Dict[str, Any]:
        """Set one or more answers and persist the whole ledger on the attempt row."""
        attempt = self._owned_attempt(attempt_id, student_id)
        if attempt.status != STATUS_IN_PROGRESS:
            raise AttemptClosed("This attempt has already been submitted.", attempt_id=attempt.id)
        session = self._live_session(attempt)
        closed = False
        with session.lock:
            if session.result is not None:
                raise AttemptClosed("This attempt has already been submitted.", attempt_id=attempt.id)
            # Re-read under the lock: another worker may have written answers
            current = self.get_attempt(attempt.id)
            if current.status == STATUS_IN_PROGRESS:
                session.ledger.load(current.answers)
                for qid, value in answers.items():
                    session.ledger.set_answer(str(qid), value)
                row = self.store.update("exam_attempts", attempt.id,
                                        {"answers": session.ledger.get_all()},
                                        expect={"status": STATUS_IN_PROGRESS})
                closed = row is None
            else:
                closed = True
        if closed:
            self._close_session(attempt.id)
            raise AttemptClosed("This attempt has already been submitted.", attempt_id=attempt.id)
        return {
            "answered": session.ledger.answered_ids(),
            "progress": session.ledger.progress(),
            "time_remaining": session.countdown.remaining(),
        }

    def attempt_state(self, attempt_id: str, student_id: Optional[str] = None) -> Dict[str, Any]:
        attempt = self._owned_attempt(attempt_id, student_id)
        if attempt.status == STATUS_IN_PROGRESS:
            exam = self.get_exam(attempt.exam_id)
            if self._expire_if_overdue(attempt, exam):
                attempt = self.get_attempt(attempt_id)
            else:
                session = self._open_session(attempt, exam)
                with session.lock:
                    session.ledger.load(attempt.answers)
                    answers = session.ledger.get_all()
                    answered = session.ledger.answered_ids()
                    progress = session.ledger.progress()
                return {
                    "attempt_id": attempt.id,
                    "status": attempt.status,
                    "questions": [q.public() for q in attempt.questions],
                    "answers": answers,
                    "answered": answered,
                    "progress": progress,
                    "time_remaining": session.countdown.remaining(),
                }
        return {
            "attempt_id": attempt.id,
            "status": attempt.status,
            "answered": [qid for qid in attempt.question_ids if qid in attempt.answers],
            "time_remaining": attempt.time_remaining,
            "result": self._result(attempt),
        }

    def _result(self, attempt: ExamAttempt, exam: Optional[Exam] = None,
                accepted: bool = False) -> Dict[str, Any]:
        exam = exam or self.get_exam(attempt.exam_id)
        pct = display_percentage(attempt.score, attempt.total_points)
        return {
            "attempt_id": attempt.id,
            "status": attempt.status,
            "score": attempt.score,
            "total_points": attempt.total_points,
            "percentage": pct,
            "passed": is_passed(pct, exam.passing_score),
            "awaiting_grading": attempt.status == STATUS_SUBMITTED,
            "accepted": accepted,
        }

    def submit_attempt(self, attempt_id: str, time_remaining: Optional[int] = None,
                       student_id: Optional[str] = None,
                       answers: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Score and close an in-progress attempt. `answers`, when given, are set on
        the ledger on top of what was already recorded.
        """
        attempt = self._owned_attempt(attempt_id, student_id)
        exam = self.get_exam(attempt.exam_id)
        if attempt.status != STATUS_IN_PROGRESS:
            return self._result(attempt, exam)

        session = self._open_session(attempt, exam)
        with session.lock:
            if session.result is not None:
                return dict(session.result, accepted=False)

            row = None
            current = self.get_attempt(attempt.id)
            if current.status == STATUS_IN_PROGRESS:
                session.ledger.load(current.answers)
                for qid, value in (answers or {}).items():
                    session.ledger.set_answer(str(qid), value)
                recorded = session.ledger.get_all()
                objective = score_objective(attempt.questions, recorded)
                left = session.countdown.remaining() if time_remaining is None else max(0, int(time_remaining))
                # StoreUnavailable propagates; recorded answers stay on the row for a retry
                row = self.store.update("exam_attempts", attempt.id, {
                    "submitted_at": self._now(),
                    "answers": recorded,
                    "score": objective.score,
                    "total_points": objective.total_points,
                    "status": objective.status,
                    "time_remaining": left,
                }, expect={"status": STATUS_IN_PROGRESS})

            if row is None:
                # Another worker got there first
                stored = self.get_attempt(attempt.id)
                session.result = self._result(stored, exam)
                print(f"[exam] duplicate submission ignored for {attempt.id}")
            else:
                stored = ExamAttempt.from_row(row)
                session.result = self._result(stored, exam)
                print(f"[exam] submitted {attempt.id}: {objective.score}/{objective.total_points} "
                      f"status={objective.status} time_remaining={left}")
            accepted = row is not None
        self._close_session(attempt.id)
        return dict(session.result, accepted=accepted)

    # ------------------------------- grading ----------------------------------
    def pending_grading(self) -> List[Dict[str, Any]]:
        rows = self.store.list("exam_attempts", {"status": STATUS_SUBMITTED}, order_by="submitted_at")
        profiles: Dict[str, Optional[Dict[str, Any]]] = {}
        exams: Dict[str, Optional[Dict[str, Any]]] = {}
        out: List[Dict[str, Any]] = []
        for r in rows:
            a = ExamAttempt.from_row(r)
            if a.student_id not in profiles:
                profiles[a.student_id] = self.store.get("profiles", a.student_id)
            if a.exam_id not in exams:
                exams[a.exam_id] = self.store.get("exams", a.exam_id)
            p = profiles[a.student_id] or {}
            e = exams[a.exam_id] or {}
            out.append({
                "attempt_id": a.id,
                "exam_id": a.exam_id,
                "exam_title": e.get("title") or "",
                "student_id": a.student_id,
                "full_name": p.get("full_name") or "",
                "matric_number": p.get("matric_number") or "",
                "submitted_at": a.submitted_at,
                "objective_score": a.score,
                "total_points": a.total_points,
                "essay_count": len(essay_questions(a.questions)),
            })
        return out

    def essays_for_grading(self, attempt_id: str) -> Dict[str, Any]:
        attempt = self.get_attempt(attempt_id)
        return {
            "attempt_id": attempt.id,
            "status": attempt.status,
            "objective_score": attempt.score,
            "total_points": attempt.total_points,
            "essays": [{
                "question_id": q.id,
                "question_text": q.question_text,
                "points": q.points,
                "rubric": q.correct_answer,
                "answer": attempt.answers.get(q.id, ""),
            } for q in essay_questions(attempt.questions)],
        }

    def grade_essays(self, attempt_id: str, essay_scores: Mapping[str, Any],
                     grader_id: Optional[str] = None) -> Dict[str, Any]:
        attempt = self.get_attempt(attempt_id)
        if attempt.status != STATUS_SUBMITTED:
            raise GradingNotAllowed(
                f"Only submitted attempts awaiting grading can be graded (status: {attempt.status}).",
                attempt_id=attempt.id, status=attempt.status,
            )
        # Validates every score before anything is written
        final_score = merge_essay_grades(attempt, essay_scores)
        row = self.store.update("exam_attempts", attempt.id, {
            "score": final_score,
            "status": STATUS_GRADED,
            "graded_at": self._now(),
        }, expect={"status": STATUS_SUBMITTED})
        if row is None:
            raise GradingNotAllowed("This attempt was graded concurrently.", attempt_id=attempt.id)
        graded = ExamAttempt.from_row(row)
        print(f"[grading] attempt {attempt.id} graded by {grader_id or '-'}: "
              f"{attempt.score} + essays -> {final_score}/{graded.total_points}")
        out = self._result(graded)
        out["final_score"] = final_score
        return out

    # ------------------------------- review -----------------------------------
    def review_attempt(self, attempt_id: str, student_id: Optional[str] = None) -> Dict[str, Any]:
        attempt = self._owned_attempt(attempt_id, student_id)
        if attempt.status == STATUS_IN_PROGRESS:
            raise AttemptClosed("Results are available after submission.", attempt_id=attempt.id)
        exam = self.get_exam(attempt.exam_id)
        items = []
        for q in attempt.questions:
            given = attempt.answers.get(q.id)
            item = {
                "question_id": q.id,
                "question_type": q.question_type,
                "question_text": q.question_text,
                "options": q.options if q.question_type == "multiple_choice" else None,
                "points": q.points,
                "answer": given,
            }
            if q.is_essay:
                item["awarded"] = None
                item["correct"] = None
            else:
                ok = is_correct(q, given)
                item["correct_answer"] = q.correct_answer
                item["correct"] = ok
                item["awarded"] = q.points if ok else 0
            items.append(item)
        out = self._result(attempt, exam)
        out["exam"] = exam.public()
        out["questions"] = items
        return out

    def student_results(self, student: Profile) -> List[Dict[str, Any]]:
        exams: Dict[str, Exam] = {}
        out: List[Dict[str, Any]] = []
        for a in self._student_attempts(student.id):
            if a.exam_id not in exams:
                exams[a.exam_id] = self.get_exam(a.exam_id)
            item = self._result(a, exams[a.exam_id])
            item.pop("accepted", None)
            item.update({
                "exam_id": a.exam_id,
                "exam_title": exams[a.exam_id].title,
                "started_at": a.started_at,
                "submitted_at": a.submitted_at,
            })
            out.append(item)
        return out

    # ------------------------------- aggregates -------------------------------
    def _all_students(self) -> List[Profile]:
        rows = self.store.list("profiles", {"role": "student"}, order_by=["created_at", "id"])
        return [Profile.from_row(r) for r in rows]

    def _all_attempts(self) -> List[ExamAttempt]:
        return [ExamAttempt.from_row(r) for r in self.store.list("exam_attempts")]

    def get_leaderboard(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        limit = self.config.leaderboard_limit if limit is None else limit
        board = build_leaderboard(self._all_students(), self._all_attempts(), limit)
        return [e.to_dict(rank=i + 1) for i, e in enumerate(board)]

    def student_stats(self, student: Profile) -> Dict[str, Any]:
        board = build_leaderboard(self._all_students(), self._all_attempts(), self.config.leaderboard_limit)
        return student_stats(student.id, self._student_attempts(student.id), board)

    def admin_overview(self) -> Dict[str, int]:
        return {
            "total_exams": self.store.count("exams"),
            "total_banks": self.store.count("question_banks"),
            "total_attempts": self.store.count("exam_attempts"),
            "pending_grading": self.store.count("exam_attempts", {"status": STATUS_SUBMITTED}),
            "total_students": self.store.count("profiles", {"role": "student"}),
        }
