# ABOUTME: Turns per-feature contributions into ranked, human-readable forecast explanations.
# ABOUTME: Also picks the intervention message for learners forecast as high risk.

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping

from .features import LearnerFeatureSnapshot

IMPACT_SCALE = 50
MIN_IMPACT = 2.0
MAX_FACTORS = 5


@dataclass(frozen=True)
class ExplanationFactor:
    factor: str
    impact: float  # signed contribution in score points
    explanation: str


def explain_factors(
    features: LearnerFeatureSnapshot,
    normalized: Mapping[str, float],
    weights: Mapping[str, float],
) -> List[ExplanationFactor]:
    """
    Rank the linear model's feature contributions.

    impact = normalized value * weight * 50; factors within +/-2 points are
    dropped and the five largest by magnitude are kept.
    """

    factors = []
    for feature, weight in weights.items():
        impact = normalized.get(feature, 0.0) * weight * IMPACT_SCALE
        if abs(impact) <= MIN_IMPACT:
            continue
        factors.append(
            ExplanationFactor(
                factor=feature,
                impact=round(impact, 2),
                explanation=_describe(feature, impact, features),
            )
        )

    factors.sort(key=lambda f: abs(f.impact), reverse=True)
    return factors[:MAX_FACTORS]


def _describe(feature: str, impact: float, features: LearnerFeatureSnapshot) -> str:
    if feature == "average_score":
        quality = "Strong" if impact > 0 else "Weak"
        return f"{quality} historical performance (avg: {features.average_score:g}%)"
    if feature == "streak_days" and impact > 0:
        return f"Good engagement streak ({features.streak_days} days)"
    if feature == "struggling_skills" and impact < 0:
        return f"Struggling in {features.struggling_skills} skill areas"
    if feature == "average_knowledge_state" and impact > 0:
        return "Strong knowledge foundation"
    if feature == "error_rate" and impact < 0:
        return f"High error rate ({features.error_rate * 100:.0f}%)"
    direction = "positive" if impact > 0 else "negative"
    return f"{feature}: {direction} impact"


INTERVENTIONS: Dict[str, str] = {
    "foundational": "Student lacks foundational knowledge. Recommend: prerequisite review and personalized tutoring.",
    "re_engagement": "No recent engagement. Recommend: motivational message and easy practice problems.",
    "multi_area": "Struggling in multiple areas. Recommend: 1-on-1 teacher intervention and targeted practice.",
    "misconception": "High error rate suggests misconceptions. Recommend: interactive explanations and worked examples.",
    "generic": "Performance at risk. Consider: extended deadline, additional resources, or teacher check-in.",
}


def choose_intervention(features: LearnerFeatureSnapshot) -> str:
    """First matching rule wins."""
    if features.average_knowledge_state < 0.3:
        return INTERVENTIONS["foundational"]
    if features.streak_days == 0:
        return INTERVENTIONS["re_engagement"]
    if features.struggling_skills > 2:
        return INTERVENTIONS["multi_area"]
    if features.error_rate > 0.5:
        return INTERVENTIONS["misconception"]
    return INTERVENTIONS["generic"]
