"""
Exam Session Engine: sequences timed questions with no backtracking.

Session progression lives in one immutable ExamSession value that only the
transition functions below can advance. The orchestrator drives one
ExamQuestion at a time, reports each attempt to the answer sink and, on
advance(), folds it into the score and the learner's topic performance.
"""
import dataclasses
import logging
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from .config import (
    DEFAULT_EXAM_QUESTIONS,
    MAX_EXAM_QUESTIONS,
    MIN_EXAM_QUESTIONS,
    QUESTION_DURATION_SECONDS,
)
from .errors import IllegalTransitionError
from .models import QuestionAttempt, Scenario, SeededItem
from .performance import PerformanceTracker
from .question import ExamQuestion, ThreadTicker, TickScheduler

logger = logging.getLogger(__name__)


def clamp_exam_length(requested: Optional[int]) -> int:
    """Requested exam length clamped to [MIN_EXAM_QUESTIONS, MAX_EXAM_QUESTIONS]."""
    if requested is None:
        return DEFAULT_EXAM_QUESTIONS
    return min(MAX_EXAM_QUESTIONS, max(MIN_EXAM_QUESTIONS, int(requested)))


@dataclass(frozen=True)
class ExamSession:
    session_id: str
    items: Tuple[Scenario, ...]
    current_index: int = 0
    correct_count: int = 0
    answered: int = 0
    completed: bool = False
    exited: bool = False

    @property
    def total(self) -> int:
        """Questions that reached Submitted and were counted."""
        return self.answered

    @property
    def current_item(self) -> Optional[Scenario]:
        if self.completed or self.current_index >= len(self.items):
            return None
        return self.items[self.current_index]

    @property
    def score(self) -> float:
        return self.correct_count / self.total if self.total else 0.0


def new_session(items: Sequence[Scenario], session_id: Optional[str] = None) -> ExamSession:
    if not items:
        raise ValueError("An exam session needs at least one item")
    return ExamSession(session_id=session_id or str(uuid4()), items=tuple(items))


def record_answer(session: ExamSession, correct: bool) -> ExamSession:
    """Count the active question and move past it. Completes after the last item."""
    if session.completed:
        raise IllegalTransitionError("session already completed")
    next_index = session.current_index + 1
    return dataclasses.replace(
        session,
        current_index=next_index,
        correct_count=session.correct_count + (1 if correct else 0),
        answered=session.answered + 1,
        completed=next_index >= len(session.items),
    )


def abandon(session: ExamSession) -> ExamSession:
    """Early exit: completes with whatever has been answered so far."""
    if session.completed:
        raise IllegalTransitionError("session already completed")
    return dataclasses.replace(session, completed=True, exited=True)


@dataclass(frozen=True)
class ExamResult:
    session_id: str
    correct: int
    total: int
    score: float
    exited: bool

    @property
    def percent(self) -> int:
        return round(self.score * 100)


class AnswerSink(Protocol):
    def record_answer(
        self,
        session_id: str,
        item_id: str,
        order_index: int,
        selected_choice_id: Optional[str],
        time_spent_seconds: int,
    ) -> object: ...


class ExamSessionOrchestrator:
    """
    Runs one exam session.

    Usage:
        orch = ExamSessionOrchestrator(tracker, answer_sink=db)
        orch.start(pool, 40)
        orch.lock_in("B")        # or let the clock run out
        orch.advance()
        ...
        orch.result()
    """

    def __init__(
        self,
        tracker: Optional[PerformanceTracker] = None,
        answer_sink: Optional[AnswerSink] = None,
        scheduler: Optional[TickScheduler] = None,
        duration: int = QUESTION_DURATION_SECONDS,
        rng: Optional[random.Random] = None,
        on_submit: Optional[Callable[[QuestionAttempt], None]] = None,
    ):
        self.tracker = tracker
        self.answer_sink = answer_sink
        self.scheduler = scheduler if scheduler is not None else ThreadTicker()
        self.duration = duration
        self.rng = rng or random.Random()
        self.on_submit = on_submit

        self.session: Optional[ExamSession] = None
        self.question: Optional[ExamQuestion] = None
        self.attempts: List[QuestionAttempt] = []
        self.report_errors: List[Exception] = []

        self._pending: Optional[QuestionAttempt] = None
        self._lock = threading.RLock()
        self._closed = False
        # one worker keeps answer reports in item order
        self._reporter = ThreadPoolExecutor(max_workers=1, thread_name_prefix="exam-report")

    # ----- lifecycle -----

    def start(self, item_pool: Sequence[Scenario], count: int, session_id: Optional[str] = None) -> ExamSession:
        """Sample `count` items without replacement from the eligible pool and open question 0."""
        if count <= 0:
            raise ValueError("count must be positive")
        if len(item_pool) < count:
            logger.warning(f"Only {len(item_pool)} eligible items available, requested {count}")
        picked = self.rng.sample(list(item_pool), min(count, len(item_pool)))
        return self._open(new_session(picked, session_id))

    def start_seeded(self, seeded: Sequence[SeededItem], session_id: Optional[str] = None) -> ExamSession:
        """Use an already ordered list from the exam seed source."""
        ordered = [s.item for s in sorted(seeded, key=lambda s: s.order_index)]
        return self._open(new_session(ordered, session_id))

    def _open(self, session: ExamSession) -> ExamSession:
        with self._lock:
            if self._closed:
                raise IllegalTransitionError("orchestrator is closed")
            if self.session is not None and not self.session.completed:
                raise IllegalTransitionError("an exam session is already running")
            self.session = session
            self.attempts = []
            self.report_errors = []
            self._pending = None
            logger.info(f"Exam session {session.session_id}: {len(session.items)} questions")
            self._begin_question()
            return session

    def _begin_question(self) -> None:
        question = ExamQuestion(self.session.current_item, duration=self.duration)
        question.on_submit = lambda attempt: self._on_submitted(question, attempt)
        self.question = question
        question.start(self.scheduler)

    # ----- question actions -----

    def select(self, choice_id: str) -> bool:
        return self._active_question().select(choice_id)

    def lock_in(self, choice_id: Optional[str] = None) -> Optional[QuestionAttempt]:
        return self._active_question().lock_in(choice_id)

    def _active_question(self) -> ExamQuestion:
        if self.session is None or self.session.completed or self.question is None:
            raise IllegalTransitionError("no active question")
        return self.question

    def _on_submitted(self, question: ExamQuestion, attempt: QuestionAttempt) -> None:
        with self._lock:
            session = self.session
            if (
                self._closed
                or session is None
                or session.completed
                or question is not self.question
                or self._pending is not None
            ):
                logger.warning(f"Discarding late attempt for item {attempt.item_id}")
                return
            self._pending = attempt
            if self.answer_sink is not None:
                # queued under the lock so close() cannot shut the reporter down in between
                self._reporter.submit(self._send_report, session.session_id, attempt, session.current_index)
        if self.on_submit is not None:
            self.on_submit(attempt)

    def _send_report(self, session_id: str, attempt: QuestionAttempt, order_index: int) -> None:
        try:
            self.answer_sink.record_answer(
                session_id,
                attempt.item_id,
                order_index,
                attempt.selected_choice_id,
                attempt.time_spent_seconds,
            )
        except Exception as e:
            logger.error(f"Answer report failed for item {attempt.item_id}: {e}")
            self.report_errors.append(e)

    # ----- session transitions -----

    def advance(self) -> ExamSession:
        """Count the submitted question and move to the next one. Never goes back."""
        with self._lock:
            if self.session is None or self.session.completed:
                raise IllegalTransitionError("no running exam session")
            if self._pending is None:
                raise IllegalTransitionError("current question has not been submitted")
            item = self.session.current_item
            attempt = self._consume_pending(item)
            self.session = record_answer(self.session, attempt.correct)
            if self.session.completed:
                self.question = None
                logger.info(
                    f"Exam session {self.session.session_id} completed: "
                    f"{self.session.correct_count}/{self.session.total}"
                )
            else:
                self._begin_question()
            return self.session

    def exit(self) -> ExamSession:
        """
        Abandon the exam now. The denominator is the number of questions that
        reached Submitted, not the requested length.
        """
        with self._lock:
            if self.session is None or self.session.completed:
                raise IllegalTransitionError("no running exam session")
            if self.question is not None:
                self.question.cancel()
            if self._pending is not None:
                attempt = self._consume_pending(self.session.current_item)
                self.session = record_answer(self.session, attempt.correct)
            if not self.session.completed:
                self.session = abandon(self.session)
            self.question = None
            logger.info(
                f"Exam session {self.session.session_id} exited: "
                f"{self.session.correct_count}/{self.session.total}"
            )
            return self.session

    def _consume_pending(self, item: Scenario) -> QuestionAttempt:
        attempt = self._pending
        self._pending = None
        self.attempts.append(attempt)
        if self.tracker is not None:
            try:
                self.tracker.record_attempt(item.topic, attempt.correct)
            except Exception as e:
                logger.error(f"Performance update failed for topic {item.topic!r}: {e}")
                self.report_errors.append(e)
        return attempt

    def result(self) -> ExamResult:
        if self.session is None:
            raise IllegalTransitionError("exam not started")
        s = self.session
        return ExamResult(
            session_id=s.session_id,
            correct=s.correct_count,
            total=s.total,
            score=s.score,
            exited=s.exited,
        )

    def close(self, wait: bool = True) -> None:
        """Stop the clock and flush (or drop) queued answer reports. Later attempts are discarded."""
        with self._lock:
            self._closed = True
            if self.question is not None:
                self.question.cancel()
        self._reporter.shutdown(wait=wait)
