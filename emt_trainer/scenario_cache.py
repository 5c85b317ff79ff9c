"""
Cache-or-generate gate for adaptive practice scenarios.

Policy: the most recent cached scenario for (user, topic) wins; the generator
is only called when nothing is cached for that pair. Generated output must
pass validate_scenario() before it is stored or returned.
"""
import dataclasses
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Tuple

from .errors import GenerationValidationError, ScenarioValidationError
from .generator import map_topic_to_domain, normalize_tags
from .models import Scenario
from .validator import validate_scenario

logger = logging.getLogger(__name__)


class ScenarioStore(Protocol):
    def latest_scenario(self, user_id: str, topic: str) -> Optional[Scenario]: ...

    def insert_scenario(self, user_id: str, scenario: Scenario, created_at: datetime) -> Scenario: ...


class ScenarioGenerator(Protocol):
    def generate(self, topic: str) -> Dict[str, Any]: ...


class ScenarioCache:
    def __init__(self, store: ScenarioStore, generator: Optional[ScenarioGenerator] = None):
        self.store = store
        self.generator = generator
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, user_id: str, topic: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault((user_id, topic), threading.Lock())

    def get_or_generate(self, user_id: str, topic: str) -> Scenario:
        """
        Return the cached scenario for (user, topic), generating one only if none exists.

        Raises:
            GenerationValidationError: generated output failed validation (nothing cached).
            Any generator/provider error, unchanged.
            ValueError: cache miss with no generator configured.
        """
        # Single flight per (user, topic): a second caller waits and then hits the cache
        with self._lock_for(user_id, topic):
            cached = self.store.latest_scenario(user_id, topic)
            if cached is not None:
                logger.info(f"Scenario cache hit: user={user_id} topic={topic!r}")
                return cached

            if self.generator is None:
                raise ValueError(f"No cached scenario for {topic!r} and no generator configured")
            logger.info(f"Scenario cache miss: user={user_id} topic={topic!r}, generating")
            raw = self.generator.generate(topic)
            try:
                validated = validate_scenario(raw)
            except ScenarioValidationError as e:
                logger.warning(f"Generated scenario for {topic!r} rejected: {e}")
                raise GenerationValidationError(e.field, e.message) from e

            scenario = self._normalize(validated, topic)
            created_at = datetime.now(timezone.utc)
            try:
                # the stored copy carries the id later cache hits will return
                return self.store.insert_scenario(user_id, scenario, created_at)
            except Exception as e:
                logger.error(f"Cache insert failed for {topic!r}: {e}")
                return scenario

    @staticmethod
    def _normalize(scenario: Scenario, topic: str) -> Scenario:
        domain = map_topic_to_domain(topic)
        return dataclasses.replace(
            scenario,
            id=f"gen-{int(time.time() * 1000)}",
            domain=domain,
            topic=topic,
            tags=tuple(normalize_tags(list(scenario.tags), domain, topic)),
            difficulty=scenario.difficulty or "hard",
        )
