# ABOUTME: Defines the per-skill mastery record and update result for knowledge tracing.
# ABOUTME: Records serialize to plain dicts for JSON snapshots.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal

RecommendedAction = Literal["master", "practice", "prereq", "intervention"]

MASTERY_THRESHOLD = 0.85
STRUGGLING_THRESHOLD = 0.3
STRUGGLING_MIN_ATTEMPTS = 5


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SkillMasteryRecord:
    """BKT parameters and latent mastery belief for one skill."""

    skill_id: str
    p_init: float  # P(known before any practice)
    p_transition: float  # P(learn | not known) per opportunity
    p_correct: float  # P(correct | known); slip = 1 - p_correct
    p_guess: float  # P(correct | not known)
    p_known: float
    attempts: int = 0
    correct_count: int = 0
    last_updated: datetime = field(default_factory=utc_now)

    @property
    def p_slip(self) -> float:
        return 1.0 - self.p_correct

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "p_init": self.p_init,
            "p_transition": self.p_transition,
            "p_correct": self.p_correct,
            "p_guess": self.p_guess,
            "p_known": self.p_known,
            "attempts": self.attempts,
            "correct_count": self.correct_count,
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class KnowledgeTraceResult:
    """Outcome of a single observed answer."""

    skill_id: str
    previous_knowledge: float
    updated_knowledge: float
    confidence: float  # certainty of the estimate, grows with attempts
    predicted_next_correct_prob: float
    recommended_action: RecommendedAction

    @property
    def mastery_delta(self) -> float:
        return self.updated_knowledge - self.previous_knowledge
