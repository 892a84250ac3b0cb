# ABOUTME: Groups the performance forecast engine, feature snapshot, and explanations.
# ABOUTME: Re-exports the public forecasting entrypoints.

from .engine import ForecastEngine, PredictionResult, assess_risk
from .explanations import ExplanationFactor, choose_intervention, explain_factors
from .features import (
    FEATURE_WEIGHTS,
    LearnerFeatureSnapshot,
    build_feature_snapshot,
    difficulty_for_proficiency,
    normalize_features,
)

__all__ = [
    "FEATURE_WEIGHTS",
    "ExplanationFactor",
    "ForecastEngine",
    "LearnerFeatureSnapshot",
    "PredictionResult",
    "assess_risk",
    "build_feature_snapshot",
    "choose_intervention",
    "difficulty_for_proficiency",
    "explain_factors",
    "normalize_features",
]
