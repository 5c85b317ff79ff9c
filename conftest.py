"""Shared fixtures: in-memory stand-ins for Supabase, the LLM generator and the answer sink."""
import copy
import dataclasses
import threading
from datetime import datetime

import pytest

from emt_trainer.models import PerformanceRecord, Scenario
from emt_trainer.validator import validate_scenario

VIGNETTE = (
    "A 54-year-old male reports crushing substernal chest pain radiating to the left arm, "
    "diaphoretic and short of breath."
)


def raw_scenario(**overrides) -> dict:
    raw = {
        "vignette": VIGNETTE,
        "cues": [
            {"text": "crushing substernal chest pain radiating to the left arm", "rationale": "classic ACS presentation"},
            {"text": "diaphoretic", "rationale": "sympathetic response"},
            {"text": "short of breath", "rationale": "possible pump failure"},
        ],
        "question": "What is the MOST appropriate next step?",
        "choices": [
            {"id": "A", "text": "Aspirin and rapid transport", "correct": True, "why_right": "Antiplatelet therapy for suspected ACS"},
            {"id": "B", "text": "Oral glucose", "correct": False, "why_wrong": "No sign of hypoglycemia"},
            {"id": "C", "text": "Epinephrine auto-injector", "correct": False, "why_wrong": "No anaphylaxis"},
            {"id": "D", "text": "Cold pack to the chest", "correct": False, "why_wrong": "Does not treat ischemia"},
        ],
        "reasoning_steps": [
            {"label": "Recognize", "detail": "Chest pain radiating to the arm suggests ACS"},
            {"label": "Prioritize", "detail": "Time-sensitive cardiac emergency"},
            {"label": "Act", "detail": "Aspirin if no contraindication, transport"},
        ],
        "tags": ["Cardiology", "NREMT"],
    }
    raw.update(overrides)
    return raw


def make_item(item_id: str, topic: str = "Cardiology") -> Scenario:
    raw = raw_scenario(id=item_id, topic=topic, domain="Medical")
    return validate_scenario(raw)


class InMemoryPerformanceStore:
    """Mirrors the Supabase semantics: unique (user, topic) insert, compare-and-set update."""

    def __init__(self):
        self.rows = {}
        self.lock = threading.Lock()
        self.writes = 0

    def seed(self, user_id, topic, accuracy, attempts=1):
        self.rows[(user_id, topic)] = PerformanceRecord(topic, accuracy, attempts, datetime(2024, 1, 1))

    def get_performance(self, user_id, topic):
        with self.lock:
            row = self.rows.get((user_id, topic))
            return copy.copy(row) if row else None

    def list_performance(self, user_id):
        with self.lock:
            return [copy.copy(r) for (u, _), r in self.rows.items() if u == user_id]

    def insert_performance(self, user_id, record):
        with self.lock:
            if (user_id, record.topic) in self.rows:
                return False
            self.rows[(user_id, record.topic)] = copy.copy(record)
            self.writes += 1
            return True

    def update_performance(self, user_id, record, expected_attempts):
        with self.lock:
            current = self.rows.get((user_id, record.topic))
            if current is None or current.attempts != expected_attempts:
                return False
            self.rows[(user_id, record.topic)] = copy.copy(record)
            self.writes += 1
            return True


class InMemoryScenarioStore:
    """Like generated_scenarios: the id is assigned by the store, not taken from the caller."""

    def __init__(self):
        self.rows = []
        self.fail_inserts = False

    def latest_scenario(self, user_id, topic):
        matches = [r for r in self.rows if r[0] == user_id and r[1] == topic]
        if not matches:
            return None
        return max(matches, key=lambda r: r[2])[3]

    def insert_scenario(self, user_id, scenario, created_at):
        if self.fail_inserts:
            raise RuntimeError("insert failed")
        stored = dataclasses.replace(scenario, id=f"db-{len(self.rows)}")
        self.rows.append((user_id, scenario.topic, created_at, stored))
        return stored


class FakeGenerator:
    def __init__(self, payload=None, error=None):
        self.payload = payload if payload is not None else raw_scenario()
        self.error = error
        self.calls = []

    def generate(self, topic):
        self.calls.append(topic)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.payload)


class RecordingSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.records = []

    def record_answer(self, session_id, item_id, order_index, selected_choice_id, time_spent_seconds):
        if self.fail:
            raise ConnectionError("sink unavailable")
        self.records.append((session_id, item_id, order_index, selected_choice_id, time_spent_seconds))
        return True


@pytest.fixture
def perf_store():
    return InMemoryPerformanceStore()


@pytest.fixture
def scenario_store():
    return InMemoryScenarioStore()


@pytest.fixture
def item_pool():
    return [make_item(f"item-{i}", topic) for i, topic in enumerate(
        ["Cardiology", "Airway", "Trauma", "Cardiology", "Respiratory", "Airway", "Trauma", "Cardiology"]
    )]
