# ABOUTME: Wires knowledge tracing, action policies, and forecasting into one closed learning loop.
# ABOUTME: Owns one instance of each engine and snapshots them together for persistence.

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np

from ..forecast.engine import ForecastEngine, PredictionResult
from ..forecast.features import build_feature_snapshot
from ..knowledge_tracing.schemas import KnowledgeTraceResult
from ..knowledge_tracing.tracer import KnowledgeTracer
from ..policy.engine import PolicyEngine, build_state_key
from ..policy.schemas import (
    ACTION_TYPE_POLICIES,
    ActionContext,
    LearningAction,
    ReinforcementLearningResult,
    RewardObservation,
)
from .config import EngineConfig
from .errors import SnapshotValidationError

logger = logging.getLogger(__name__)

POLICY_ACTION_TYPES = {policy_id: action_type for action_type, policy_id in ACTION_TYPE_POLICIES.items()}


@dataclass(frozen=True)
class LoopStep:
    trace: KnowledgeTraceResult
    decision: ReinforcementLearningResult
    feedback: Optional[RewardObservation] = None


@dataclass(frozen=True)
class _PendingAction:
    action: str
    context: ActionContext


class LearningLoop:
    """
    Closed loop over a single learner.

    Each answered question updates the tracer, rewards the action recommended
    on the previous step (correct -> positive, incorrect -> negative), and
    selects the next action for the learner's new discretized state.
    """

    def __init__(self, config: Optional[EngineConfig] = None, rng: Optional[np.random.Generator] = None):
        config = config or EngineConfig()
        self.tracer = KnowledgeTracer(config.knowledge_tracing)
        self.policy_engine = PolicyEngine(config.policy, rng=rng)
        self.forecaster = ForecastEngine(config.forecast)
        self._pending: Dict[str, _PendingAction] = {}

    def record_answer(
        self,
        skill_id: str,
        is_correct: bool,
        *,
        learning_style: str,
        motivation_level: str,
        time_of_day: str,
        policy_id: str = "content_selection",
        actions: Optional[Sequence[str]] = None,
    ) -> LoopStep:
        # Resolve the policy first so an unknown id leaves the tracer untouched.
        policy = self.policy_engine.get_policy(policy_id)
        trace = self.tracer.update_knowledge(skill_id, is_correct)
        context = ActionContext(
            student_proficiency=trace.updated_knowledge,
            learning_style=learning_style,
            motivation_level=motivation_level,
            time_of_day=time_of_day,
        )
        state = build_state_key(context)
        candidates = list(actions) if actions else policy.action_space

        feedback = None
        pending = self._pending.pop(policy_id, None)
        if pending is not None:
            feedback = self.policy_engine.observe_reward(
                LearningAction(
                    action_id=uuid.uuid4().hex,
                    type=POLICY_ACTION_TYPES.get(policy_id, policy_id),
                    content_id=pending.action,
                    student_response="positive" if is_correct else "negative",
                    context=pending.context,
                    policy_id=policy_id,
                ),
                new_state=state,
                next_possible_actions=candidates,
            )

        decision = self.policy_engine.select_action(policy_id, state, candidates)
        self._pending[policy_id] = _PendingAction(action=decision.recommended_action, context=context)
        return LoopStep(trace=trace, decision=decision, feedback=feedback)

    def forecast(self, scores: Sequence[float], **engagement: Any) -> PredictionResult:
        """Forecast from assessment scores plus engagement features (see build_feature_snapshot)."""
        features = build_feature_snapshot(self.tracer, scores, **engagement)
        return self.forecaster.predict_performance(features)

    def system_report(self) -> Dict[str, Any]:
        return {
            "knowledge": self.tracer.get_global_statistics(),
            "policies": len(self.policy_engine.get_policies()),
            "observed_rewards": self.policy_engine.observation_count,
            "policy_performance": self.policy_engine.get_policy_performance(),
            "forecast_metrics": self.forecaster.get_model_metrics(),
        }

    def export_state(self) -> str:
        return json.dumps(
            {
                "knowledge": json.loads(self.tracer.export_states()),
                "policies": json.loads(self.policy_engine.export_policies()),
                "exported_at": datetime.now(timezone.utc).isoformat(),
            }
        )

    def import_state(self, payload: Union[str, bytes, Mapping[str, Any]]) -> None:
        """Restore both engines, or neither if any part of the snapshot is bad."""

        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise SnapshotValidationError(f"System snapshot is not valid JSON: {exc}") from exc
        if not isinstance(payload, Mapping) or "knowledge" not in payload or "policies" not in payload:
            raise SnapshotValidationError("System snapshot must contain 'knowledge' and 'policies'.")

        # Dry run against scratch engines so a bad policy section cannot
        # leave the tracer already overwritten.
        KnowledgeTracer(self.tracer.defaults).import_states(payload["knowledge"])
        PolicyEngine().import_policies(payload["policies"])

        self.tracer.import_states(payload["knowledge"])
        self.policy_engine.import_policies(payload["policies"])
        self._pending.clear()
        logger.info("Restored learning loop snapshot exported at %s", payload.get("exported_at"))
