# admin.py
from typing import Any, Dict, Optional

from flask import Blueprint, jsonify, request, g

from engine import ExamEngine
from errors import CBTError, InvalidEssayScore, NotFound
from models import Profile


# =========================
# Blueprint factory
# =========================
def create_admin_blueprint(
    url_prefix: str,
    deps: Dict[str, Any],
    name: str = "admin",
) -> Blueprint:
    """
    Admin blueprint, including:
      • Overview counters (exams, banks, attempts, pending grading, students)
      • Essay grading queue + grade submission
      • Student progress table (full leaderboard)
    deps:
      - engine: ExamEngine
    """
    engine: ExamEngine = deps["engine"]

    # Mount at /<BASE_PATH>/admin or /admin if url_prefix=""
    mount_prefix = (url_prefix.rstrip("/") + "/admin") if url_prefix else "/admin"
    bp = Blueprint(name, __name__, url_prefix=mount_prefix)

    @bp.errorhandler(CBTError)
    def _cbt_error(e: CBTError):
        return jsonify(e.to_dict()), e.status_code

    def _current_admin() -> Optional[Profile]:
        uid = getattr(g, "user_id", None)
        if not uid:
            return None
        try:
            p = engine.get_profile(uid)
        except NotFound:
            return None
        return p if p.is_admin else None

    @bp.before_request
    def require_admin():
        if not getattr(g, "user_id", None):
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        admin = _current_admin()
        if admin is None:
            return jsonify({"ok": False, "error": "forbidden"}), 403
        g.admin = admin

    # ---------- Overview ----------
    @bp.get("/overview")
    def admin_overview():
        return jsonify(dict(engine.admin_overview(), ok=True))

    # ---------- Grading ----------
    @bp.get("/grading")
    def grading_queue():
        return jsonify({"ok": True, "attempts": engine.pending_grading()})

    @bp.get("/grading/<attempt_id>")
    def grading_detail(attempt_id: str):
        return jsonify(dict(engine.essays_for_grading(attempt_id), ok=True))

    @bp.post("/grading/<attempt_id>")
    def grading_submit(attempt_id: str):
        data = request.get_json(silent=True) or {}
        scores = data.get("scores")
        if not isinstance(scores, dict):
            raise InvalidEssayScore("scores must be an object of question_id -> points")
        result = engine.grade_essays(attempt_id, scores, grader_id=g.admin.id)
        return jsonify(dict(result, ok=True))

    # ---------- Students ----------
    @bp.get("/students")
    def students_overview():
        return jsonify({"ok": True, "students": engine.get_leaderboard(limit=-1)})

    return bp
