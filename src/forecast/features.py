# ABOUTME: Declares the learner feature snapshot consumed by the forecast engine.
# ABOUTME: Normalizes raw features and assembles snapshots from knowledge-tracing state.

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..knowledge_tracing.tracer import KnowledgeTracer

RECENT_SCORE_WINDOW = 5

# Linear-model weights. Features absent from this table are normalized but unweighted.
FEATURE_WEIGHTS: Dict[str, float] = {
    "average_score": 0.25,
    "recent_score": 0.20,
    "score_variance": -0.08,
    "mastered_skills": 0.15,
    "struggling_skills": -0.12,
    "average_knowledge_state": 0.18,
    "streak_days": 0.10,
    "sessions_count": 0.08,
    "average_session_duration": 0.07,
    "days_since_last_attempt": -0.05,
    "days_since_mastered": 0.03,
    "error_rate": -0.12,
    "attention_span": 0.06,
}


@dataclass(frozen=True)
class LearnerFeatureSnapshot:
    """Aggregated learner features for one forecast call."""

    # Historical performance
    average_score: float = 0.0  # 0-100
    recent_score: float = 0.0  # mean of the last few assessments
    score_variance: float = 0.0  # score spread in points, typically 0-25
    total_attempts: int = 0

    # Knowledge state
    mastered_skills: int = 0
    struggling_skills: int = 0
    average_knowledge_state: float = 0.0  # 0-1

    # Engagement
    days_active: int = 0
    sessions_count: int = 0
    average_session_duration: float = 0.0  # minutes
    streak_days: int = 0

    # Behavioral
    time_of_day_preference: int = 0  # hour 0-23
    attention_span: float = 0.0  # minutes
    error_rate: float = 0.0  # 0-1

    # Context
    subject: str = "general"
    difficulty: str = "intermediate"
    education_level: str = ""

    # Temporal
    days_since_last_attempt: float = 0.0
    days_since_mastered: float = 0.0

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "LearnerFeatureSnapshot":
        """Build a snapshot from a dict or DataFrame row, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in raw.items():
            if key in known and not (isinstance(value, float) and np.isnan(value)):
                values[key] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_features(features: LearnerFeatureSnapshot) -> Dict[str, float]:
    """Scale raw features to roughly [0, 1] with fixed caps."""

    return {
        "average_score": features.average_score / 100,
        "recent_score": features.recent_score / 100,
        "score_variance": min(features.score_variance / 25, 1.0),
        "total_attempts": min(features.total_attempts / 100, 1.0),
        "mastered_skills": min(features.mastered_skills / 20, 1.0),
        "struggling_skills": min(features.struggling_skills / 20, 1.0),
        "average_knowledge_state": float(features.average_knowledge_state),
        "days_active": min(features.days_active / 365, 1.0),
        "sessions_count": min(features.sessions_count / 100, 1.0),
        "average_session_duration": min(features.average_session_duration / 60, 1.0),
        "streak_days": min(features.streak_days / 30, 1.0),
        "error_rate": float(features.error_rate),
        "days_since_last_attempt": max(0.0, 1 - features.days_since_last_attempt / 30),
        "days_since_mastered": max(0.0, 1 - features.days_since_mastered / 90),
        "attention_span": min(features.attention_span / 60, 1.0),
    }


def difficulty_for_proficiency(proficiency: float) -> str:
    if proficiency < 0.3:
        return "beginner"
    if proficiency < 0.6:
        return "intermediate"
    if proficiency < 0.85:
        return "advanced"
    return "expert"


def build_feature_snapshot(
    tracer: KnowledgeTracer,
    scores: Sequence[float],
    *,
    days_active: int = 0,
    sessions_count: int = 0,
    average_session_duration: float = 0.0,
    streak_days: int = 0,
    time_of_day_preference: int = 0,
    attention_span: float = 0.0,
    subject: str = "general",
    difficulty: Optional[str] = None,
    education_level: str = "",
    days_since_last_attempt: float = 0.0,
    days_since_mastered: float = 0.0,
) -> LearnerFeatureSnapshot:
    """
    Assemble a snapshot from assessment scores, engagement counts, and the
    tracer's current skill table.

    Knowledge aggregates (mastered/struggling counts, mean mastery, attempts,
    error rate) come from the tracer; everything else is supplied by the caller.
    """

    score_array = np.asarray(scores, dtype=float)
    if score_array.size:
        average_score = float(score_array.mean())
        recent_score = float(score_array[-RECENT_SCORE_WINDOW:].mean())
        score_variance = float(score_array.std())
    else:
        average_score = recent_score = score_variance = 0.0

    stats = tracer.get_global_statistics()
    skills = tracer.to_frame()
    total_attempts = int(stats["total_attempts"])
    if total_attempts:
        error_rate = 1.0 - float(pd.to_numeric(skills["correct_count"]).sum()) / total_attempts
    else:
        error_rate = 0.0

    average_knowledge_state = float(stats["average_mastery"])
    return LearnerFeatureSnapshot(
        average_score=average_score,
        recent_score=recent_score,
        score_variance=score_variance,
        total_attempts=total_attempts,
        mastered_skills=int(stats["mastered_count"]),
        struggling_skills=int(stats["struggling_count"]),
        average_knowledge_state=average_knowledge_state,
        days_active=days_active,
        sessions_count=sessions_count,
        average_session_duration=average_session_duration,
        streak_days=streak_days,
        time_of_day_preference=time_of_day_preference,
        attention_span=attention_span,
        error_rate=error_rate,
        subject=subject,
        difficulty=difficulty or difficulty_for_proficiency(average_knowledge_state),
        education_level=education_level,
        days_since_last_attempt=days_since_last_attempt,
        days_since_mastered=days_since_mastered,
    )
