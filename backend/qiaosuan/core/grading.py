# backend/qiaosuan/core/grading.py

import math
import re

from .schemas import Problem

# Answers within this distance of the expected value count as correct.
TOLERANCE = 0.01

# Longest leading decimal literal, same prefix rules as a browser's parseFloat.
_NUMBER_PREFIX = re.compile(
    r"[+-]?(?:Infinity|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)"
)

# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def parse_answer(text: str) -> float:
    """Parse the leading number of the answer text; NaN when there is none."""
    m = _NUMBER_PREFIX.match(str(text).lstrip())
    if not m:
        return math.nan
    return float(m.group(0))


def grade(answer_text: str, problem: Problem) -> bool:
    value = parse_answer(answer_text)
    # NaN compares false, so unparsable text is never correct
    return abs(value - problem.answer) < TOLERANCE


def summary_message(score: int, total: int) -> str:
    """Encouragement shown on the summary screen, picked by score tier."""
    if total and score == total:
        return "太棒了！你是巧算大师！🏆"
    if score >= 8:
        return "非常优秀！继续保持！🌟"
    return "干得不错！继续加油哦！💪"
