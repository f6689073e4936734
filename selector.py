# selector.py
import random
from typing import List, Optional, Sequence

from errors import NoQuestionsAvailable
from models import Exam, Question


def select_questions(bank_questions: Sequence[Question], exam: Exam,
                     rng: Optional[random.Random] = None) -> List[Question]:
    """
    Freeze the question set for one attempt.
    number_of_questions == 0 (or >= bank size) -> every question in the bank;
    otherwise a uniform sample without replacement.
    """
    pool = list(bank_questions)
    if not pool:
        raise NoQuestionsAvailable(
            "This exam has no questions yet. Please contact the admin.",
            exam_id=exam.id, bank_id=exam.bank_id,
        )
    n = int(exam.number_of_questions or 0)
    if n <= 0 or n >= len(pool):
        return pool
    return (rng or random).sample(pool, n)
