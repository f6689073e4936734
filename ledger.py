# ledger.py
from typing import Any, Dict, Iterable, List, Mapping, Optional

from errors import QuestionNotInAttempt
from models import Answer, Question, make_answer


class AnswerLedger:
    """
    Current answers of one active attempt, keyed by question id.
    Only ids of the attempt's frozen question set are accepted; correctness is
    never checked here. The stored attempt row is the durable copy: load() it
    before each change, persist get_all() after.
    """

    def __init__(self, questions: Iterable[Question], answers: Optional[Mapping[str, Any]] = None):
        self._questions: Dict[str, Question] = {q.id: q for q in questions}
        self._answers: Dict[str, Answer] = {}
        if answers:
            self.load(answers)

    def load(self, answers: Mapping[str, Any]) -> None:
        """Replace the contents with previously persisted answers."""
        self._answers = {}
        for qid, value in (answers or {}).items():
            if str(qid) in self._questions:
                self.set_answer(str(qid), value)

    def set_answer(self, question_id: str, value: Any) -> Answer:
        q = self._questions.get(str(question_id))
        if q is None:
            raise QuestionNotInAttempt(f"Question {question_id} is not part of this attempt.",
                                       question_id=str(question_id))
        ans = make_answer(q, value)
        self._answers[q.id] = ans
        return ans

    def get_all(self) -> Dict[str, str]:
        """Submission payload: question id -> answer string."""
        return {qid: a.as_text() for qid, a in self._answers.items()}

    def answered_ids(self) -> List[str]:
        # Keep the presentation order of the frozen set
        return [qid for qid in self._questions if qid in self._answers]

    def progress(self) -> Dict[str, int]:
        return {"answered": len(self._answers), "total": len(self._questions)}
