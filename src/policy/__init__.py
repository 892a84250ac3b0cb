# ABOUTME: Groups the reinforcement-learning policy engine and its record types.
# ABOUTME: Re-exports the engine, state helpers, and action/result dataclasses.

from .engine import PolicyEngine, build_state_key, policy_for_action_type
from .schemas import (
    ActionContext,
    LearningAction,
    Policy,
    ReinforcementLearningResult,
    RewardObservation,
    StateKey,
    TrajectoryAnalysis,
)

__all__ = [
    "ActionContext",
    "LearningAction",
    "Policy",
    "PolicyEngine",
    "ReinforcementLearningResult",
    "RewardObservation",
    "StateKey",
    "TrajectoryAnalysis",
    "build_state_key",
    "policy_for_action_type",
]
