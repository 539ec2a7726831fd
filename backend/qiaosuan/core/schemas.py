from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# ------------------------------------------------------------
# Problem & history models
# ------------------------------------------------------------
class Problem(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    question: str                  # e.g. "25 × 44"
    answer: float
    explanation: str
    category: str = Field(alias="type")   # e.g. "乘法分配律"


class AnsweredRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    problem: Problem
    user_answer: str
    correct: bool


class Screen(str, Enum):
    INTRO = "intro"
    LOADING = "loading"
    PLAYING = "playing"
    SUMMARY = "summary"


# ------------------------------------------------------------
# Request models
# ------------------------------------------------------------
class AnswerRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    answer: str = ""               # raw text from the number input; JSON numbers become text


# ------------------------------------------------------------
# Response models
# ------------------------------------------------------------
class ProblemOut(BaseModel):
    question: str
    category: str


class HistoryItemOut(BaseModel):
    question: str
    category: str
    user_answer: str
    answer: float
    correct: bool
    explanation: str


class SessionView(BaseModel):
    session_id: str
    screen: Screen
    total: int
    current_index: int
    current_problem: Optional[ProblemOut] = None
    answer_revealed: bool
    score: int
    progress: float
    is_last: bool
    from_fallback: bool
    last_result: Optional[HistoryItemOut] = None
    history: List[HistoryItemOut] = []
    message: Optional[str] = None


class EndSessionResponse(BaseModel):
    status: str
    message: str
    score: int
    total: int
