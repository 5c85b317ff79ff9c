"""Runtime configuration and exam constants.

Credentials come from the environment (or a local .env file); everything else
is a plain constant the app and the engine import directly.
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

# Exam timing: one fixed clock per question, NREMT-style
QUESTION_DURATION_SECONDS = 90
LOW_TIME_WARNING_SECONDS = 10

# Exam length bounds (requested counts are clamped into this range)
DEFAULT_EXAM_QUESTIONS = 40
MIN_EXAM_QUESTIONS = 10
MAX_EXAM_QUESTIONS = 120

# Used by weakest_topic() before the learner has any history
FALLBACK_TOPICS = ("Airway", "Trauma", "Cardiology", "Respiratory")

# Scenario shape
MIN_VIGNETTE_LENGTH = 40
MIN_CUES = 3
MAX_CUES = 5
MIN_REASONING_STEPS = 3
CHOICE_IDS = ("A", "B", "C", "D")
MAX_TAGS = 4

# My Scenarios library
SCENARIO_PAGE_SIZE = 10

# Compare-and-set retries for performance upserts
MAX_WRITE_RETRIES = 5


@dataclass(frozen=True)
class Settings:
    supabase_url: str | None = field(default_factory=lambda: os.getenv("SUPABASE_URL"))
    supabase_key: str | None = field(default_factory=lambda: os.getenv("SUPABASE_KEY"))
    openai_api_key: str | None = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openai_model: str = field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o-mini"))
    openai_base_url: str = field(default_factory=lambda: os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"))
    openai_timeout: int = field(default_factory=lambda: int(os.getenv("OPENAI_TIMEOUT", "60")))


def get_settings() -> Settings:
    return Settings()
