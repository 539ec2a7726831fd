# backend/qiaosuan/core/__init__.py
"""
Core package for the 巧算 quiz service.
Exposes the problem models, grading and the session state machine.
"""

from .schemas import (
    Problem,
    AnsweredRecord,
    Screen,
    AnswerRequest,
    SessionView,
    EndSessionResponse,
)
from .grading import grade, parse_answer, summary_message
from .session import QuizSession, QuizStateError

__all__ = [
    "Problem",
    "AnsweredRecord",
    "Screen",
    "AnswerRequest",
    "SessionView",
    "EndSessionResponse",
    "grade",
    "parse_answer",
    "summary_message",
    "QuizSession",
    "QuizStateError",
]
