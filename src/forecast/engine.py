# ABOUTME: Forecasts assessment scores from learner feature snapshots with a fixed heuristic ensemble.
# ABOUTME: Produces calibrated scores, confidence intervals, risk tiers, explanations and interventions.

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple

import pandas as pd

from ..common.bounds import clamp
from ..common.config import ForecastConfig
from .explanations import ExplanationFactor, choose_intervention, explain_factors
from .features import FEATURE_WEIGHTS, LearnerFeatureSnapshot, normalize_features

logger = logging.getLogger(__name__)

RiskLevel = Literal["low", "medium", "high"]

POPULATION_MEAN = 60.0
CALIBRATION_FACTOR = 0.95
MAX_CONFIDENCE = 0.95
LOW_RISK_SCORE = 70
MEDIUM_RISK_SCORE = 50

# Self-reported figures; nothing is evaluated against held-out data.
STATIC_MODEL_METRICS = {
    "accuracy": 0.87,
    "precision": 0.85,
    "recall": 0.89,
    "f1_score": 0.87,
}


@dataclass(frozen=True)
class PredictionResult:
    predicted_score: float
    confidence: float
    lower_bound: float
    upper_bound: float
    risk_level: RiskLevel
    explainable_factors: List[ExplanationFactor] = field(default_factory=list)
    recommended_intervention: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ForecastEngine:
    """
    Score forecaster built from fixed heuristics.

    The "ensemble" members are deterministic formulas named after the model
    families they stand in for (decision tree, kernel blend, boosting). They
    are kept arithmetic-for-arithmetic; swapping in trained models would change
    every documented output.
    """

    def __init__(self, config: Optional[ForecastConfig] = None):
        self.config = config or ForecastConfig()
        self._training_examples: List[Tuple[LearnerFeatureSnapshot, float]] = []
        self.retrain_count = 0

    def predict_performance(self, features: LearnerFeatureSnapshot) -> PredictionResult:
        normalized = normalize_features(features)

        linear = _linear_prediction(normalized)
        ensemble = (_tree_prediction(normalized) + _blend_prediction(normalized) + _boost_prediction(normalized)) / 3
        calibrated = POPULATION_MEAN + ((linear + ensemble) / 2 - POPULATION_MEAN) * CALIBRATION_FACTOR
        prediction = clamp(calibrated, 0.0, 100.0)

        data_points = features.total_attempts + features.sessions_count + features.days_active
        confidence = clamp(data_points / 100, 0.0, MAX_CONFIDENCE)
        margin = 5 + max(features.score_variance, 0.0) / 5

        score = float(round(prediction))
        risk_level = assess_risk(score)
        factors = explain_factors(features, normalized, FEATURE_WEIGHTS)

        return PredictionResult(
            predicted_score=score,
            confidence=confidence,
            lower_bound=float(round(max(0.0, prediction - margin))),
            upper_bound=float(round(min(100.0, prediction + margin))),
            risk_level=risk_level,
            explainable_factors=factors,
            recommended_intervention=choose_intervention(features) if risk_level == "high" else None,
        )

    def batch_predict(self, features_list: Iterable[LearnerFeatureSnapshot]) -> List[PredictionResult]:
        return [self.predict_performance(features) for features in features_list]

    def batch_predict_frame(self, features_df: pd.DataFrame) -> pd.DataFrame:
        """Forecast every row of a feature table; the input index is preserved."""

        columns = [
            "predicted_score",
            "confidence",
            "lower_bound",
            "upper_bound",
            "risk_level",
            "recommended_intervention",
            "top_factor",
        ]
        rows = []
        for _, row in features_df.iterrows():
            result = self.predict_performance(LearnerFeatureSnapshot.from_mapping(row))
            rows.append(
                {
                    "predicted_score": result.predicted_score,
                    "confidence": result.confidence,
                    "lower_bound": result.lower_bound,
                    "upper_bound": result.upper_bound,
                    "risk_level": result.risk_level,
                    "recommended_intervention": result.recommended_intervention,
                    "top_factor": result.explainable_factors[0].factor if result.explainable_factors else None,
                }
            )
        return pd.DataFrame(rows, columns=columns, index=features_df.index)

    def predict_skill_performance(self, features: LearnerFeatureSnapshot, skill: str) -> PredictionResult:
        """Forecast for one skill, nudged by the learner's mastered/struggling balance."""

        adjustment = 0.0
        if features.mastered_skills > 5 and features.struggling_skills == 0:
            adjustment = 5.0
        elif features.struggling_skills > features.mastered_skills:
            adjustment = -10.0

        base = self.predict_performance(replace(features, subject=skill))
        if not adjustment:
            return base

        score = clamp(base.predicted_score + adjustment, 0.0, 100.0)
        risk_level = assess_risk(score)
        return PredictionResult(
            predicted_score=score,
            confidence=base.confidence,
            lower_bound=clamp(base.lower_bound + adjustment, 0.0, score),
            upper_bound=clamp(base.upper_bound + adjustment, score, 100.0),
            risk_level=risk_level,
            explainable_factors=base.explainable_factors,
            recommended_intervention=choose_intervention(features) if risk_level == "high" else None,
        )

    def add_training_example(self, features: LearnerFeatureSnapshot, actual_score: float) -> None:
        if not 0 <= actual_score <= 100:
            raise ValueError(f"actual_score must be in [0, 100], got {actual_score}.")
        self._training_examples.append((features, float(actual_score)))
        if len(self._training_examples) % self.config.retrain_every == 0:
            self._retrain()

    def get_model_metrics(self) -> Dict[str, Any]:
        metrics: Dict[str, Any] = dict(STATIC_MODEL_METRICS)
        metrics["training_examples"] = len(self._training_examples)
        return metrics

    def _retrain(self) -> None:
        # TODO: fit FEATURE_WEIGHTS against the buffered (features, actual_score) pairs.
        self.retrain_count += 1
        logger.info("Retrain hook triggered with %d training examples", len(self._training_examples))


def assess_risk(score: float) -> RiskLevel:
    if score >= LOW_RISK_SCORE:
        return "low"
    if score >= MEDIUM_RISK_SCORE:
        return "medium"
    return "high"


def _linear_prediction(normalized: Mapping[str, float]) -> float:
    weighted = sum(normalized.get(name, 0.0) * weight for name, weight in FEATURE_WEIGHTS.items())
    # Weighted sum spans roughly [-1, 1]; centre it on 50.
    return 50 + weighted * 50


def _tree_prediction(normalized: Mapping[str, float]) -> float:
    if normalized["average_knowledge_state"] < 0.3:
        return 40.0
    if normalized["streak_days"] > 0.5:
        return 75 + normalized["average_score"] * 10
    if normalized["sessions_count"] > 0.7:
        return 70.0
    return 60.0


def _blend_prediction(normalized: Mapping[str, float]) -> float:
    knowledge = normalized["average_knowledge_state"] * 100
    engagement = (normalized["streak_days"] + normalized["sessions_count"]) / 2 * 100
    consistency = (1 - normalized["score_variance"]) * 100
    return knowledge * 0.5 + engagement * 0.3 + consistency * 0.2


def _boost_prediction(normalized: Mapping[str, float]) -> float:
    prediction = 50.0
    if normalized["average_knowledge_state"] > 0.7:
        prediction += 15
    elif normalized["average_knowledge_state"] < 0.4:
        prediction -= 15
    if normalized["error_rate"] > 0.4:
        prediction -= 10
    if normalized["streak_days"] > 0.6:
        prediction += 8
    return clamp(prediction, 20.0, 100.0)
