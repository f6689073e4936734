# exam.py
# -----------------------------------------------------------------------------
# Student-facing exam routes (JSON).
# - Available exams are filtered by the student's field + is_active
# - Start freezes the question set and arms the countdown (autosubmit at zero)
# - Answers are kept on the attempt row (ledger) and may also ride on submit
# - Submit is idempotent: a timer/manual race returns the stored result
# -----------------------------------------------------------------------------

from typing import Any, Dict, Optional

from flask import Blueprint, request, jsonify, g

from engine import ExamEngine
from errors import CBTError, InvalidAnswer
from models import Profile


# -----------------------------------------------------------------------------
# Blueprint factory
# -----------------------------------------------------------------------------
def create_exam_blueprint(base_path: str, deps: Dict[str, Any], name: str = "exam") -> Blueprint:
    """
    Factory that returns a Blueprint mounted at base_path (e.g. "/cbt").
    Required deps: engine
    """
    bp = Blueprint(name, __name__, url_prefix=(base_path or None))

    engine: ExamEngine = deps["engine"]

    @bp.errorhandler(CBTError)
    def _cbt_error(e: CBTError):
        return jsonify(e.to_dict()), e.status_code

    def _student() -> Optional[Profile]:
        uid = getattr(g, "user_id", None)
        if not uid:
            return None
        return engine.get_profile(uid)

    def _unauthorized():
        return jsonify({"ok": False, "error": "unauthorized"}), 401

    # --------------------------------- exams ----------------------------------
    @bp.get("/exams")
    def exams_available():
        student = _student()
        if not student:
            return _unauthorized()
        return jsonify({"ok": True, "field": student.field, "exams": engine.available_exams(student)})

    @bp.post("/exams/<exam_id>/start")
    def exam_start(exam_id: str):
        student = _student()
        if not student:
            return _unauthorized()
        exam = engine.get_exam(exam_id)
        started = engine.start_attempt(student, exam)
        return jsonify(dict(started, ok=True)), 201

    # -------------------------------- attempts --------------------------------
    @bp.get("/attempts/<attempt_id>")
    def attempt_status(attempt_id: str):
        if not getattr(g, "user_id", None):
            return _unauthorized()
        state = engine.attempt_state(attempt_id, student_id=g.user_id)
        return jsonify(dict(state, ok=True))

    @bp.post("/attempts/<attempt_id>/answers")
    def attempt_answer(attempt_id: str):
        if not getattr(g, "user_id", None):
            return _unauthorized()
        data = request.get_json(silent=True) or {}
        # Either {"question_id": ..., "value": ...} or {"answers": {qid: value, ...}}
        batch = data.get("answers")
        if isinstance(batch, dict):
            items = batch
        elif data.get("question_id") is not None:
            items = {str(data["question_id"]): data.get("value")}
        else:
            raise InvalidAnswer("question_id and value are required")
        out = engine.record_answers(attempt_id, items, student_id=g.user_id)
        return jsonify(dict(out, ok=True))

    @bp.post("/attempts/<attempt_id>/submit")
    def attempt_submit(attempt_id: str):
        if not getattr(g, "user_id", None):
            return _unauthorized()
        data = request.get_json(silent=True) or {}
        answers = data.get("answers")
        if answers is not None and not isinstance(answers, dict):
            raise InvalidAnswer("answers must be an object of question_id -> value")
        left = data.get("time_remaining")
        try:
            left = int(left) if left is not None else None
        except (TypeError, ValueError):
            left = None
        result = engine.submit_attempt(attempt_id, time_remaining=left, student_id=g.user_id,
                                       answers=answers)
        return jsonify(dict(result, ok=True))

    @bp.get("/attempts/<attempt_id>/review")
    def attempt_review(attempt_id: str):
        if not getattr(g, "user_id", None):
            return _unauthorized()
        return jsonify(dict(engine.review_attempt(attempt_id, student_id=g.user_id), ok=True))

    # ---------------------------------- me ------------------------------------
    @bp.get("/me/attempts")
    def my_attempts():
        student = _student()
        if not student:
            return _unauthorized()
        return jsonify({"ok": True, "attempts": engine.student_results(student)})

    @bp.get("/me/stats")
    def my_stats():
        student = _student()
        if not student:
            return _unauthorized()
        return jsonify(dict(engine.student_stats(student), ok=True))

    @bp.get("/leaderboard")
    def leaderboard():
        if not getattr(g, "user_id", None):
            return _unauthorized()
        limit = request.args.get("limit", type=int)
        return jsonify({"ok": True, "leaderboard": engine.get_leaderboard(limit)})

    return bp
