"""Structural validation for practice items.

Every machine-generated or hand-authored scenario goes through
validate_scenario() before it is cached, imported or shown. Checks run in a
fixed order and stop at the first failure; the raised error names the field.
"""
from typing import Any, Dict, List

from .config import CHOICE_IDS, MAX_CUES, MIN_CUES, MIN_REASONING_STEPS, MIN_VIGNETTE_LENGTH
from .errors import ScenarioValidationError
from .models import Choice, Cue, ReasoningStep, Scenario

REQUIRED_FIELDS = ("vignette", "cues", "question", "choices", "reasoning_steps")

# Accepted alternate spellings (camelCase payloads)
_ALIASES = {
    "reasoning_steps": "reasoningSteps",
    "why_right": "whyRight",
    "why_wrong": "whyWrong",
}


def _get(raw: Dict[str, Any], key: str, default: Any = None) -> Any:
    if key in raw:
        return raw[key]
    alias = _ALIASES.get(key)
    if alias and alias in raw:
        return raw[alias]
    return default


def _has(raw: Dict[str, Any], key: str) -> bool:
    return key in raw or _ALIASES.get(key, key) in raw


def _nonblank(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _fail(field: str, message: str):
    raise ScenarioValidationError(field, message)


def validate_scenario(raw: Any) -> Scenario:
    """
    Validate a raw scenario dict and return the immutable Scenario.

    Raises:
        ScenarioValidationError: on the first violated rule.
    """
    if not isinstance(raw, dict):
        _fail("scenario", "must be a JSON object")

    # 1. shape
    for key in REQUIRED_FIELDS:
        if not _has(raw, key):
            _fail(key, f"missing '{key}'")

    # 2. vignette
    vignette = raw["vignette"]
    if not isinstance(vignette, str) or len(vignette) < MIN_VIGNETTE_LENGTH:
        _fail("vignette", f"must be a string of at least {MIN_VIGNETTE_LENGTH} characters")

    # 3. cues
    cues = raw["cues"]
    if not isinstance(cues, list) or not MIN_CUES <= len(cues) <= MAX_CUES:
        _fail("cues", f"need between {MIN_CUES} and {MAX_CUES} cues")
    for i, c in enumerate(cues):
        if not isinstance(c, dict) or not _nonblank(c.get("text")) or not _nonblank(c.get("rationale")):
            _fail(f"cues[{i}]", "missing text/rationale")

    # 4. question
    question = raw["question"]
    if not _nonblank(question):
        _fail("question", "must be a non-empty string")

    # 5. choices: exactly A-D
    choices = raw["choices"]
    if not isinstance(choices, list) or len(choices) != len(CHOICE_IDS):
        _fail("choices", f"must have exactly {len(CHOICE_IDS)} choices")
    if not all(isinstance(c, dict) for c in choices):
        _fail("choices", "every choice must be an object")
    ids = [c.get("id") for c in choices]
    if sorted(ids, key=str) != list(CHOICE_IDS):
        _fail("choices", f"ids must be exactly {', '.join(CHOICE_IDS)} with no duplicates")

    # 6. exactly one correct
    correct_count = sum(1 for c in choices if c.get("correct") is True)
    if correct_count != 1:
        _fail("choices", f"exactly one correct choice required, found {correct_count}")

    # 7. explanations
    for c in choices:
        if c.get("correct") is True:
            if not _nonblank(_get(c, "why_right")):
                _fail(f"choices[{c['id']}].why_right", "correct answer missing why_right")
        elif not _nonblank(_get(c, "why_wrong")):
            _fail(f"choices[{c['id']}].why_wrong", f"wrong answer {c['id']} missing why_wrong")

    # 8. reasoning steps
    steps = _get(raw, "reasoning_steps")
    if not isinstance(steps, list) or len(steps) < MIN_REASONING_STEPS:
        _fail("reasoning_steps", f"need >= {MIN_REASONING_STEPS} reasoning steps")
    for i, s in enumerate(steps):
        if not isinstance(s, dict) or not _nonblank(s.get("label")) or not _nonblank(s.get("detail")):
            _fail(f"reasoning_steps[{i}]", "missing label/detail")

    # 9. cues quote the vignette verbatim (case-insensitive)
    lower_vignette = vignette.lower()
    for i, c in enumerate(cues):
        if c["text"].lower() not in lower_vignette:
            _fail(f"cues[{i}].text", f"'{c['text']}' does not appear verbatim in vignette")

    return _build(raw, vignette, cues, question, choices, steps)


def _build(
    raw: Dict[str, Any],
    vignette: str,
    cues: List[Dict[str, Any]],
    question: str,
    choices: List[Dict[str, Any]],
    steps: List[Dict[str, Any]],
) -> Scenario:
    ordered = sorted(choices, key=lambda c: c["id"])
    tags = raw.get("tags")
    return Scenario(
        id=str(raw.get("id") or ""),
        domain=str(raw.get("domain") or ""),
        topic=str(raw.get("topic") or ""),
        vignette=vignette,
        cues=tuple(Cue(c["text"], c["rationale"]) for c in cues),
        question=question,
        choices=tuple(
            Choice(
                id=c["id"],
                text=str(c.get("text") or ""),
                correct=c.get("correct") is True,
                why_right=_get(c, "why_right"),
                why_wrong=_get(c, "why_wrong"),
            )
            for c in ordered
        ),
        reasoning_steps=tuple(ReasoningStep(s["label"], s["detail"]) for s in steps),
        tags=tuple(str(t) for t in tags) if isinstance(tags, list) else (),
        difficulty=raw.get("difficulty"),
    )
