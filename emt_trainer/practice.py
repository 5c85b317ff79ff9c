"""Adaptive practice: target the weakest topic, serve a cached or fresh scenario, record the answer."""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import FALLBACK_TOPICS
from .models import Choice, PerformanceRecord, ResumeContext, Scenario
from .performance import PerformanceTracker
from .scenario_cache import ScenarioCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PracticeAnswer:
    choice: Choice
    correct: bool
    record: Optional[PerformanceRecord]


class AdaptivePractice:
    def __init__(
        self,
        tracker: PerformanceTracker,
        cache: ScenarioCache,
        fallbacks: Sequence[str] = FALLBACK_TOPICS,
    ):
        self.tracker = tracker
        self.cache = cache
        self.fallbacks = fallbacks

    @property
    def user_id(self) -> str:
        return self.tracker.user_id

    def target_topic(self, resume: Optional[ResumeContext] = None) -> str:
        if resume is not None and resume.adaptive_target:
            return resume.adaptive_target
        return self.tracker.weakest_topic(self.fallbacks)

    def next_scenario(self, resume: Optional[ResumeContext] = None) -> Scenario:
        topic = self.target_topic(resume)
        logger.info(f"Adaptive practice for user={self.user_id}: topic={topic!r}")
        return self.cache.get_or_generate(self.user_id, topic)

    def answer(self, scenario: Scenario, choice_id: str) -> PracticeAnswer:
        """Score a practice answer and fold it into the topic's accuracy (best-effort)."""
        choice = scenario.choice(choice_id)
        if choice is None:
            raise ValueError(f"Unknown choice {choice_id!r} for item {scenario.id}")
        record = None
        try:
            record = self.tracker.record_attempt(scenario.topic, choice.correct)
        except Exception as e:
            logger.error(f"Failed to record result for {scenario.topic!r}: {e}")
        return PracticeAnswer(choice=choice, correct=choice.correct, record=record)
