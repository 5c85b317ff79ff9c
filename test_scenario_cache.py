"""ScenarioCache and AdaptivePractice against in-memory stores."""
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeGenerator, make_item, raw_scenario
from emt_trainer.database import DatabaseClient
from emt_trainer.errors import GenerationValidationError
from emt_trainer.models import ResumeContext
from emt_trainer.performance import PerformanceTracker
from emt_trainer.practice import AdaptivePractice
from emt_trainer.scenario_cache import ScenarioCache


def test_cache_hit_skips_generator(scenario_store):
    cached = scenario_store.insert_scenario("u1", make_item("cached-1", "Trauma"), datetime(2024, 1, 1, tzinfo=timezone.utc))
    generator = FakeGenerator()

    result = ScenarioCache(scenario_store, generator).get_or_generate("u1", "Trauma")

    assert result is cached
    assert generator.calls == []


def test_most_recent_cached_scenario_wins(scenario_store):
    new = scenario_store.insert_scenario("u1", make_item("new", "Trauma"), datetime(2024, 2, 1, tzinfo=timezone.utc))
    scenario_store.insert_scenario("u1", make_item("old", "Trauma"), datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert ScenarioCache(scenario_store, FakeGenerator()).get_or_generate("u1", "Trauma").id == new.id


def test_cache_is_per_user(scenario_store):
    mine = scenario_store.insert_scenario("u1", make_item("mine", "Trauma"), datetime(2024, 1, 1, tzinfo=timezone.utc))
    generator = FakeGenerator()

    result = ScenarioCache(scenario_store, generator).get_or_generate("u2", "Trauma")

    assert generator.calls == ["Trauma"]
    assert result.id != mine.id


def test_miss_generates_validates_and_stores(scenario_store):
    generator = FakeGenerator(raw_scenario(tags=[]))
    cache = ScenarioCache(scenario_store, generator)

    result = cache.get_or_generate("u1", "Head trauma")

    assert generator.calls == ["Head trauma"]
    assert result.id == "db-0"
    assert result.topic == "Head trauma"
    assert result.domain == "Trauma"
    assert result.tags == ("Trauma", "Head trauma", "NREMT")
    assert result.difficulty == "hard"
    assert scenario_store.latest_scenario("u1", "Head trauma") == result

    # second call is served from the store
    assert cache.get_or_generate("u1", "Head trauma") == result
    assert generator.calls == ["Head trauma"]


class GeneratedScenariosTable:
    """Stands in for the generated_scenarios table behind a real DatabaseClient; assigns uuids on insert."""

    def __init__(self):
        self.rows = []
        self.client = MagicMock()
        self.client.table.side_effect = lambda name: self._query()

    def _query(self):
        query = MagicMock()
        for method in ("select", "eq", "order", "limit"):
            getattr(query, method).return_value = query
        query.insert.side_effect = lambda row: self._insert(query, row)
        query.execute.side_effect = lambda: MagicMock(data=list(reversed(self.rows))[:1])
        return query

    def _insert(self, query, row):
        stored = dict(row, id=f"uuid-{len(self.rows)}")
        self.rows.append(stored)
        query.execute.side_effect = lambda: MagicMock(data=[stored])
        return query


def test_miss_then_hit_return_same_item_through_database():
    table = GeneratedScenariosTable()
    cache = ScenarioCache(DatabaseClient(table.client), FakeGenerator())

    first = cache.get_or_generate("u1", "Airway")
    second = cache.get_or_generate("u1", "Airway")

    assert first.id == "uuid-0"
    assert second == first
    assert len(table.rows) == 1


def test_failed_insert_falls_back_to_generated_id(scenario_store):
    scenario_store.fail_inserts = True
    result = ScenarioCache(scenario_store, FakeGenerator()).get_or_generate("u1", "Airway")
    assert result.id.startswith("gen-")


def test_invalid_generation_is_not_cached(scenario_store):
    bad = raw_scenario()
    bad["choices"][1]["correct"] = True
    bad["choices"][1]["why_right"] = "also right"
    cache = ScenarioCache(scenario_store, FakeGenerator(bad))

    with pytest.raises(GenerationValidationError) as exc:
        cache.get_or_generate("u1", "Cardiology")

    assert exc.value.field == "choices"
    assert scenario_store.rows == []


def test_generator_error_propagates(scenario_store):
    cache = ScenarioCache(scenario_store, FakeGenerator(error=requests.Timeout("provider timed out")))
    with pytest.raises(requests.Timeout):
        cache.get_or_generate("u1", "Airway")
    assert scenario_store.rows == []


def test_insert_failure_still_returns_scenario(scenario_store):
    scenario_store.fail_inserts = True
    result = ScenarioCache(scenario_store, FakeGenerator()).get_or_generate("u1", "Airway")
    assert result.topic == "Airway"
    assert scenario_store.rows == []


def test_concurrent_misses_generate_once(scenario_store):
    generator = FakeGenerator()
    cache = ScenarioCache(scenario_store, generator)
    results = []

    threads = [
        threading.Thread(target=lambda: results.append(cache.get_or_generate("u1", "Burns")))
        for _ in range(5)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert generator.calls == ["Burns"]
    assert len({r.id for r in results}) == 1


def test_practice_targets_weakest_topic(perf_store, scenario_store):
    perf_store.seed("u1", "Airway", 0.9)
    perf_store.seed("u1", "Trauma", 0.4)
    generator = FakeGenerator()
    practice = AdaptivePractice(PerformanceTracker(perf_store, "u1"), ScenarioCache(scenario_store, generator))

    scenario = practice.next_scenario()

    assert scenario.topic == "Trauma"
    assert generator.calls == ["Trauma"]


def test_practice_resume_target_overrides_weakest(perf_store, scenario_store):
    perf_store.seed("u1", "Trauma", 0.1)
    practice = AdaptivePractice(PerformanceTracker(perf_store, "u1"), ScenarioCache(scenario_store, FakeGenerator()))

    scenario = practice.next_scenario(ResumeContext(adaptive_target="Obstetrics"))

    assert scenario.topic == "Obstetrics"


def test_practice_new_learner_uses_fallback(perf_store, scenario_store):
    practice = AdaptivePractice(
        PerformanceTracker(perf_store, "new"),
        ScenarioCache(scenario_store, FakeGenerator()),
        fallbacks=("Respiratory",),
    )
    assert practice.target_topic() == "Respiratory"


def test_practice_answer_updates_accuracy(perf_store, scenario_store):
    tracker = PerformanceTracker(perf_store, "u1")
    practice = AdaptivePractice(tracker, ScenarioCache(scenario_store, FakeGenerator()))
    item = make_item("p-1", "Airway")

    right = practice.answer(item, "A")
    wrong = practice.answer(item, "C")

    assert right.correct and not wrong.correct
    assert wrong.choice.why_wrong == "No anaphylaxis"
    assert wrong.record.attempts == 2
    assert wrong.record.accuracy == pytest.approx(0.5)

    with pytest.raises(ValueError):
        practice.answer(item, "E")


def test_practice_answer_survives_tracker_failure(scenario_store):
    class BrokenStore:
        def get_performance(self, user_id, topic):
            raise ConnectionError("db down")

    practice = AdaptivePractice(PerformanceTracker(BrokenStore(), "u1"), ScenarioCache(scenario_store, FakeGenerator()))
    answer = practice.answer(make_item("p-2"), "A")
    assert answer.correct
    assert answer.record is None


def test_cache_without_generator_serves_stored_scenarios(scenario_store):
    stored = scenario_store.insert_scenario("u1", make_item("lib-1", "Burns"), datetime(2024, 1, 1, tzinfo=timezone.utc))
    cache = ScenarioCache(scenario_store)

    assert cache.get_or_generate("u1", "Burns") is stored
    with pytest.raises(ValueError):
        cache.get_or_generate("u1", "Airway")
