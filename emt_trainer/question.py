"""
Timed lifecycle of a single exam question.

A question is either Unanswered (clock running) or Submitted (terminal). It
reaches Submitted exactly once, by lock-in or by the clock hitting zero,
whichever comes first; the loser is a no-op. The winning transition emits one
QuestionAttempt to the on_submit callback.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

from .config import LOW_TIME_WARNING_SECONDS, QUESTION_DURATION_SECONDS
from .errors import IllegalTransitionError
from .models import QuestionAttempt, Scenario

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unanswered:
    time_remaining: int


@dataclass(frozen=True)
class Submitted:
    selected_choice_id: Optional[str]
    expired: bool


QuestionState = Union[Unanswered, Submitted]


class TickHandle(Protocol):
    def cancel(self) -> None: ...


class TickScheduler(Protocol):
    def every(self, interval: float, callback: Callable[[], object]) -> TickHandle: ...


class _ThreadTick:
    def __init__(self, interval: float, callback: Callable[[], object]):
        self.interval = interval
        self.callback = callback
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("Tick callback failed, stopping ticker")
                self._stop.set()

    def cancel(self) -> None:
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()


class ThreadTicker:
    """Default scheduler: one daemon thread per handle, woken once per interval."""

    def every(self, interval: float, callback: Callable[[], object]) -> _ThreadTick:
        return _ThreadTick(interval, callback)


class _ManualTick:
    def __init__(self, callback: Callable[[], object]):
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTicker:
    """Scheduler with no background wake-ups. The owner calls fire() (or advance_clock on the question)."""

    def __init__(self):
        self.handles: list[_ManualTick] = []

    def every(self, interval: float, callback: Callable[[], object]) -> _ManualTick:
        handle = _ManualTick(callback)
        self.handles.append(handle)
        return handle

    def fire(self, times: int = 1) -> None:
        for _ in range(times):
            for handle in list(self.handles):
                if not handle.cancelled:
                    handle.callback()

    @property
    def active(self) -> int:
        return sum(1 for h in self.handles if not h.cancelled)


def format_clock(seconds: int) -> str:
    m, s = divmod(max(0, int(seconds)), 60)
    return f"{m}:{s:02d}"


class ExamQuestion:
    """State machine for one question instance. Never reused for another question."""

    def __init__(
        self,
        item: Scenario,
        on_submit: Optional[Callable[[QuestionAttempt], None]] = None,
        duration: int = QUESTION_DURATION_SECONDS,
    ):
        self.item = item
        self.duration = duration
        self.on_submit = on_submit
        self._state: QuestionState = Unanswered(duration)
        self._selection: Optional[str] = None
        self._attempt: Optional[QuestionAttempt] = None
        self._handle: Optional[TickHandle] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> QuestionState:
        return self._state

    @property
    def selection(self) -> Optional[str]:
        return self._selection

    @property
    def attempt(self) -> Optional[QuestionAttempt]:
        return self._attempt

    @property
    def is_submitted(self) -> bool:
        return isinstance(self._state, Submitted)

    @property
    def time_remaining(self) -> int:
        state = self._state
        return state.time_remaining if isinstance(state, Unanswered) else 0

    @property
    def is_low_time(self) -> bool:
        return self.is_submitted or self.time_remaining <= LOW_TIME_WARNING_SECONDS

    def start(self, scheduler: TickScheduler) -> None:
        """Begin the once-per-second clock."""
        if self._handle is not None:
            raise IllegalTransitionError("question clock already started")
        if not self.is_submitted:
            self._handle = scheduler.every(1.0, self.tick)

    def cancel(self) -> None:
        """Stop pending ticks. Safe to call more than once."""
        if self._handle is not None:
            self._handle.cancel()

    def select(self, choice_id: str) -> bool:
        """Change the current selection. Ignored once submitted."""
        if self.item.choice(choice_id) is None:
            raise ValueError(f"Unknown choice {choice_id!r} for item {self.item.id}")
        with self._lock:
            if self.is_submitted:
                return False
            self._selection = choice_id
            return True

    def lock_in(self, choice_id: Optional[str] = None) -> Optional[QuestionAttempt]:
        """
        Finalize the selection before time runs out.

        Returns the attempt, or None when the question was already submitted
        (the timer got there first).
        """
        if choice_id is not None and self.item.choice(choice_id) is None:
            raise ValueError(f"Unknown choice {choice_id!r} for item {self.item.id}")
        with self._lock:
            if self.is_submitted:
                return None
            if choice_id is not None:
                self._selection = choice_id
            if self._selection is None:
                raise IllegalTransitionError("cannot lock in without a selected choice")
            attempt = self._submit(expired=False)
        self._report(attempt)
        return attempt

    def tick(self) -> Optional[QuestionAttempt]:
        """One second elapses. Returns the attempt if this tick expired the question."""
        with self._lock:
            state = self._state
            if not isinstance(state, Unanswered):
                return None
            remaining = state.time_remaining - 1
            if remaining > 0:
                self._state = Unanswered(remaining)
                return None
            self._state = Unanswered(0)
            attempt = self._submit(expired=True)
        self._report(attempt)
        return attempt

    def advance_clock(self, seconds: int) -> Optional[QuestionAttempt]:
        """Apply several ticks at once (for callers that poll a wall clock)."""
        for _ in range(max(0, int(seconds))):
            attempt = self.tick()
            if attempt is not None:
                return attempt
            if self.is_submitted:
                break
        return None

    def _submit(self, expired: bool) -> QuestionAttempt:
        # caller holds self._lock
        if self._attempt is not None:
            raise IllegalTransitionError(f"question {self.item.id} submitted twice")
        state = self._state
        remaining = state.time_remaining if isinstance(state, Unanswered) else 0
        time_spent = self.duration if expired else self.duration - remaining
        self._state = Submitted(self._selection, expired)
        self._attempt = QuestionAttempt(
            item_id=self.item.id,
            selected_choice_id=self._selection,
            correct=self.item.is_correct(self._selection),
            time_spent_seconds=time_spent,
            expired=expired,
        )
        self.cancel()
        return self._attempt

    def _report(self, attempt: QuestionAttempt) -> None:
        logger.debug(
            "Question %s submitted: choice=%s correct=%s expired=%s",
            attempt.item_id, attempt.selected_choice_id, attempt.correct, attempt.expired,
        )
        if self.on_submit is not None:
            self.on_submit(attempt)
