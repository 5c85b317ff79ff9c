"""Data model shared by the tracker, validator, cache and exam engine.

- PerformanceRecord: running accuracy for one (user, topic)
- Cue / Choice / ReasoningStep / Scenario: a practice item (immutable once built)
- QuestionAttempt: the outcome of one timed question
- SeededItem: one ordered row handed over by the exam seed source
- ProgressSummary: aggregate over all of a learner's topics
- ResumeContext: explicit post-login hand-off (replaces ambient browser storage)
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class PerformanceRecord:
    topic: str
    accuracy: float = 0.0
    attempts: int = 0
    last_practiced: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PerformanceRecord":
        last = row.get("last_practiced")
        if isinstance(last, str):
            try:
                last = datetime.fromisoformat(last.replace("Z", "+00:00"))
            except ValueError:
                last = None
        return cls(
            topic=row["topic"],
            accuracy=float(row.get("accuracy") or 0.0),
            attempts=int(row.get("attempts") or 0),
            last_practiced=last,
        )


@dataclass(frozen=True)
class Cue:
    text: str
    rationale: str


@dataclass(frozen=True)
class Choice:
    id: str
    text: str
    correct: bool
    why_right: Optional[str] = None
    why_wrong: Optional[str] = None


@dataclass(frozen=True)
class ReasoningStep:
    label: str
    detail: str


@dataclass(frozen=True)
class Scenario:
    id: str
    domain: str
    topic: str
    vignette: str
    cues: Tuple[Cue, ...]
    question: str
    choices: Tuple[Choice, ...]
    reasoning_steps: Tuple[ReasoningStep, ...]
    tags: Tuple[str, ...] = ()
    difficulty: Optional[str] = None

    @property
    def correct_choice(self) -> Optional[Choice]:
        return next((c for c in self.choices if c.correct), None)

    def choice(self, choice_id: Optional[str]) -> Optional[Choice]:
        if choice_id is None:
            return None
        return next((c for c in self.choices if c.id == choice_id), None)

    def is_correct(self, choice_id: Optional[str]) -> bool:
        """No selection always scores incorrect."""
        chosen = self.choice(choice_id)
        return bool(chosen and chosen.correct)

    def to_dict(self) -> Dict[str, Any]:
        """Snake_case JSON shape used by the database and the generator."""
        choices = []
        for c in self.choices:
            row: Dict[str, Any] = {"id": c.id, "text": c.text, "correct": c.correct}
            if c.why_right is not None:
                row["why_right"] = c.why_right
            if c.why_wrong is not None:
                row["why_wrong"] = c.why_wrong
            choices.append(row)
        return {
            "id": self.id,
            "domain": self.domain,
            "topic": self.topic,
            "vignette": self.vignette,
            "cues": [{"text": c.text, "rationale": c.rationale} for c in self.cues],
            "question": self.question,
            "choices": choices,
            "reasoning_steps": [{"label": s.label, "detail": s.detail} for s in self.reasoning_steps],
            "tags": list(self.tags),
            "difficulty": self.difficulty,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Scenario":
        """Build from a trusted row (already validated before it was stored)."""
        return cls(
            id=str(raw.get("id") or ""),
            domain=raw.get("domain") or "",
            topic=raw.get("topic") or "",
            vignette=raw.get("vignette") or "",
            cues=tuple(Cue(c.get("text", ""), c.get("rationale", "")) for c in raw.get("cues") or []),
            question=raw.get("question") or "",
            choices=tuple(
                Choice(
                    id=c.get("id", ""),
                    text=c.get("text", ""),
                    correct=bool(c.get("correct")),
                    why_right=c.get("why_right", c.get("whyRight")),
                    why_wrong=c.get("why_wrong", c.get("whyWrong")),
                )
                for c in raw.get("choices") or []
            ),
            reasoning_steps=tuple(
                ReasoningStep(s.get("label", ""), s.get("detail", ""))
                for s in raw.get("reasoning_steps") or raw.get("reasoningSteps") or []
            ),
            tags=tuple(raw.get("tags") or ()),
            difficulty=raw.get("difficulty"),
        )


@dataclass(frozen=True)
class QuestionAttempt:
    item_id: str
    selected_choice_id: Optional[str]
    correct: bool
    time_spent_seconds: int
    expired: bool


@dataclass(frozen=True)
class SeededItem:
    order_index: int
    item_id: str
    item: Scenario


@dataclass(frozen=True)
class ProgressSummary:
    topics: int
    attempts: int
    overall_accuracy: float
    last_practiced: Optional[datetime]


@dataclass(frozen=True)
class ResumeContext:
    """What to do once the learner is signed in. Passed in explicitly by the caller."""
    redirect_after_login: Optional[str] = None
    post_login_action: Optional[str] = None
    adaptive_target: Optional[str] = None


def order_weakest(records: List[PerformanceRecord]) -> List[PerformanceRecord]:
    """Ascending accuracy; ties broken alphabetically by topic."""
    return sorted(records, key=lambda r: (r.accuracy, r.topic))
