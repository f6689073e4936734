# errors.py
from typing import Any, Dict


class CBTError(Exception):
    """Base for every failure the exam engine reports to its caller."""
    status_code = 400
    code = "cbt_error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": False, "error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class NotFound(CBTError):
    status_code = 404
    code = "not_found"


class NoQuestionsAvailable(CBTError):
    status_code = 409
    code = "no_questions_available"


class AttemptLimitExceeded(CBTError):
    status_code = 403
    code = "attempt_limit_exceeded"


class ExamNotAvailable(CBTError):
    status_code = 403
    code = "exam_not_available"


class StoreUnavailable(CBTError):
    status_code = 503
    code = "store_unavailable"


class InvalidEssayScore(CBTError):
    code = "invalid_essay_score"


class InvalidAnswer(CBTError):
    code = "invalid_answer"


class QuestionNotInAttempt(CBTError):
    code = "question_not_in_attempt"


class AttemptClosed(CBTError):
    status_code = 409
    code = "attempt_closed"


class GradingNotAllowed(CBTError):
    status_code = 409
    code = "grading_not_allowed"
