# backend/qiaosuan/core/session.py

import logging
import uuid
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from .grading import grade, summary_message
from .schemas import (
    AnsweredRecord,
    HistoryItemOut,
    Problem,
    ProblemOut,
    Screen,
    SessionView,
)

logger = logging.getLogger("quiz.session")

Fetcher = Callable[[], Awaitable[Tuple[List[Problem], bool]]]


class QuizStateError(Exception):
    """Raised when an action is not offered on the current screen."""


def _history_out(record: AnsweredRecord) -> HistoryItemOut:
    return HistoryItemOut(
        question=record.problem.question,
        category=record.problem.category,
        user_answer=record.user_answer,
        answer=record.problem.answer,
        correct=record.correct,
        explanation=record.problem.explanation,
    )


class QuizSession:
    """
    One quiz run: intro -> loading -> playing -> summary.

    History is append-only; score always equals the number of correct
    entries in it.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self.screen = Screen.INTRO
        self.problems: Tuple[Problem, ...] = ()
        self.current_index = 0
        self.pending_answer = ""
        self.answer_revealed = False
        self.score = 0
        self.from_fallback = False
        self._history: List[AnsweredRecord] = []

    @property
    def history(self) -> Tuple[AnsweredRecord, ...]:
        return tuple(self._history)

    @property
    def current_problem(self) -> Optional[Problem]:
        if self.screen != Screen.PLAYING:
            return None
        return self.problems[self.current_index]

    @property
    def is_last(self) -> bool:
        return self.current_index >= len(self.problems) - 1

    # --------------------------------------------------------
    # Transitions
    # --------------------------------------------------------
    def begin_loading(self) -> None:
        if self.screen not in (Screen.INTRO, Screen.SUMMARY):
            raise QuizStateError(f"Cannot start from screen '{self.screen.value}'")
        self.screen = Screen.LOADING
        logger.debug(f"Session {self.session_id} loading problems")

    def load(self, problems: Sequence[Problem], from_fallback: bool = False) -> None:
        if self.screen != Screen.LOADING:
            raise QuizStateError(f"Cannot load problems on screen '{self.screen.value}'")
        if not problems:
            raise ValueError("A session needs at least one problem")
        self.problems = tuple(problems)
        self.current_index = 0
        self.score = 0
        self._history = []
        self.pending_answer = ""
        self.answer_revealed = False
        self.from_fallback = from_fallback
        self.screen = Screen.PLAYING
        logger.info(
            f"Session {self.session_id} playing {len(self.problems)} problems "
            f"(fallback={from_fallback})"
        )

    async def start(self, fetcher: Fetcher) -> None:
        """Start (or start again from the summary) with a fresh problem set."""
        previous = self.screen
        self.begin_loading()
        try:
            problems, from_fallback = await fetcher()
            self.load(problems, from_fallback)
        except BaseException:
            self.screen = previous
            raise

    def submit(self, answer_text: str) -> Optional[AnsweredRecord]:
        """
        Grade the current problem. Empty text is ignored and returns None.
        """
        if self.screen != Screen.PLAYING or self.answer_revealed:
            raise QuizStateError("No question is waiting for an answer")
        if not answer_text:
            return None

        self.pending_answer = answer_text
        problem = self.problems[self.current_index]
        record = AnsweredRecord(
            problem=problem,
            user_answer=answer_text,
            correct=grade(answer_text, problem),
        )
        if record.correct:
            self.score += 1
        self._history.append(record)
        self.answer_revealed = True

        logger.debug(
            f"Session {self.session_id} q{self.current_index + 1}: "
            f"user={answer_text!r} expected={problem.answer} correct={record.correct}"
        )
        return record

    def advance(self) -> None:
        if self.screen != Screen.PLAYING or not self.answer_revealed:
            raise QuizStateError("Answer the current question before moving on")
        if self.is_last:
            self.screen = Screen.SUMMARY
            logger.info(
                f"Session {self.session_id} finished: {self.score}/{len(self.problems)}"
            )
            return
        self.current_index += 1
        self.pending_answer = ""
        self.answer_revealed = False

    # --------------------------------------------------------
    # Views
    # --------------------------------------------------------
    def progress(self) -> float:
        if not self.problems:
            return 0.0
        if self.screen == Screen.SUMMARY:
            return 1.0
        done = self.current_index + (1 if self.answer_revealed else 0)
        return done / len(self.problems)

    def view(self) -> SessionView:
        problem = self.current_problem
        last = self._history[-1] if self.answer_revealed and self._history else None
        return SessionView(
            session_id=self.session_id,
            screen=self.screen,
            total=len(self.problems),
            current_index=self.current_index,
            current_problem=(
                ProblemOut(question=problem.question, category=problem.category)
                if problem
                else None
            ),
            answer_revealed=self.answer_revealed,
            score=self.score,
            progress=self.progress(),
            is_last=self.screen == Screen.PLAYING and self.is_last,
            from_fallback=self.from_fallback,
            last_result=_history_out(last) if last and self.screen == Screen.PLAYING else None,
            history=[_history_out(r) for r in self._history],
            message=(
                summary_message(self.score, len(self.problems))
                if self.screen == Screen.SUMMARY
                else None
            ),
        )
