"""
Scenario generation via the OpenAI chat completions API.
Produces raw scenario dicts; validation and caching happen in scenario_cache.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests

from .config import MAX_TAGS, Settings, get_settings
from .errors import ScenarioParseError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an EMT exam item writer following NREMT style."

MEDICAL_RE = re.compile(r"airway|respiratory|cardio|endocrine|neuro|sepsis|obstetric|toxic", re.I)
TRAUMA_RE = re.compile(r"trauma|burn|spine|ortho|head|chest|abdominal", re.I)
JSON_BLOCK_RE = re.compile(r"\{[\s\S]*\}")


def map_topic_to_domain(topic: str) -> str:
    """Medical keywords win over trauma keywords; unknown topics are "Medical"."""
    topic = topic or ""
    if MEDICAL_RE.search(topic):
        return "Medical"
    if TRAUMA_RE.search(topic):
        return "Trauma"
    return "Medical"


def normalize_tags(raw_tags: Any, domain: str, topic: str) -> List[str]:
    if isinstance(raw_tags, (list, tuple)) and raw_tags:
        return [str(t) for t in raw_tags[:MAX_TAGS]]
    return [domain, topic, "NREMT"]


def build_prompt(topic: str) -> str:
    return f"""
You are generating an EMT training MCQ in strict NREMT style for the topic: "{topic}".

Requirements:
- Write ONE realistic vignette (1 concise paragraph, 75-140 words).
- Then produce:
  * 3-5 cues: each {{ "text": "...", "rationale": "..." }}
    IMPORTANT: Each cue.text must appear VERBATIM in the vignette. Choose exact phrases from your vignette.
  * One question string ("What is the MOST appropriate..."/"What is the MOST likely...").
  * EXACTLY 4 choices with ids "A","B","C","D". Exactly one "correct": true; the others "correct": false.
    - For the correct choice, include "why_right".
    - For each incorrect choice, include "why_wrong".
  * 3 reasoning_steps: each {{ "label": "...", "detail": "..." }}.
- Keep exam tone (no protocols by brand name), focus on assessment/priority decisions.
- Difficulty: hard. Two answers should be close to force critical thinking.
- Return JSON ONLY in this shape:

{{
  "vignette": "string",
  "cues": [{{"text":"string from vignette","rationale":"string"}}, ...],
  "question": "string",
  "choices": [
    {{"id":"A","text":"string","correct":false,"why_wrong":"string"}},
    {{"id":"B","text":"string","correct":true,"why_right":"string"}},
    {{"id":"C","text":"string","correct":false,"why_wrong":"string"}},
    {{"id":"D","text":"string","correct":false,"why_wrong":"string"}}
  ],
  "reasoning_steps": [{{"label":"string","detail":"string"}}, {{"label":"string","detail":"string"}}, {{"label":"string","detail":"string"}}],
  "tags": ["Topic","NREMT"],
  "difficulty": "hard"
}}
"""


def extract_json(content: str) -> Dict[str, Any]:
    """Parse the model output. Falls back to the outermost {...} when JSON is wrapped in prose or fences."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, TypeError):
        match = JSON_BLOCK_RE.search(content or "")
        if not match:
            raise ScenarioParseError("AI did not return valid JSON")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ScenarioParseError(f"AI did not return valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ScenarioParseError("AI returned JSON that is not an object")
    return data


class OpenAIScenarioGenerator:
    """generate(topic) -> raw scenario dict. Provider errors propagate unchanged."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        temperature: float = 0.7,
    ):
        self.settings = settings or get_settings()
        if not self.settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY must be set")
        self.session = session or requests.Session()
        self.temperature = temperature

    def generate(self, topic: str) -> Dict[str, Any]:
        url = f"{self.settings.openai_base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self.settings.openai_model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(topic)},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.settings.openai_api_key}",
            "Content-Type": "application/json",
        }
        logger.info(f"Generating scenario for topic={topic!r} with {self.settings.openai_model}")
        resp = self.session.post(url, json=payload, headers=headers, timeout=self.settings.openai_timeout)
        resp.raise_for_status()

        data = resp.json()
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ScenarioParseError(f"Unexpected completion payload: {data!r}") from e
        return extract_json(content)
