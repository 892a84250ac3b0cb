# ABOUTME: Defines policies, discretized learner states, and action/reward records for the policy engine.
# ABOUTME: State keys are structured tuples so component values can never collide.

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, NamedTuple, Optional, Union

ActionType = Literal["content", "difficulty", "strategy", "timing"]
StudentResponse = Literal["positive", "neutral", "negative"]
Convergence = Literal["insufficient_data", "diverging", "converging", "converged"]

ACTION_TYPE_POLICIES: Dict[str, str] = {
    "content": "content_selection",
    "difficulty": "difficulty_progression",
    "strategy": "learning_strategy",
    "timing": "timing_optimization",
}

PROFICIENCY_LOW_CUTOFF = 0.33
PROFICIENCY_HIGH_CUTOFF = 0.67


class StateKey(NamedTuple):
    """Discretized learner state: proficiency bucket x style x motivation x time of day."""

    proficiency: str
    learning_style: str
    motivation_level: str
    time_of_day: str

    def label(self) -> str:
        return "/".join(self)


State = Union[StateKey, str]


def proficiency_bucket(proficiency: float) -> str:
    if proficiency < PROFICIENCY_LOW_CUTOFF:
        return "low"
    if proficiency < PROFICIENCY_HIGH_CUTOFF:
        return "mid"
    return "high"


def state_label(state: State) -> str:
    return state.label() if isinstance(state, StateKey) else str(state)


def state_to_json(state: State) -> Union[Dict[str, str], str]:
    return state._asdict() if isinstance(state, StateKey) else str(state)


def state_from_json(raw: Any) -> State:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict) and set(raw) == set(StateKey._fields):
        return StateKey(**{name: str(raw[name]) for name in StateKey._fields})
    raise ValueError(f"Unrecognized state encoding: {raw!r}")


@dataclass
class Policy:
    """One decision domain with its own exploration and learning hyper-parameters."""

    policy_id: str
    description: str
    state_space: str
    action_space: List[str]
    epsilon: float  # exploration rate
    alpha: float  # learning rate
    gamma: float  # discount factor
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ActionContext:
    student_proficiency: float
    learning_style: str
    motivation_level: str
    time_of_day: str


@dataclass(frozen=True)
class LearningAction:
    """An instructional action that was taken, with the learner's response to it."""

    action_id: str
    type: str
    content_id: str
    student_response: str
    context: ActionContext
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    policy_id: Optional[str] = None


@dataclass(frozen=True)
class ReinforcementLearningResult:
    recommended_action: str
    expected_reward: float
    exploration_probability: float
    reasoning: str
    is_exploration: bool


@dataclass(frozen=True)
class RewardObservation:
    """What observe_reward applied to the Q-table."""

    policy_id: str
    state: State
    action: str
    reward: float
    previous_q: float
    updated_q: float
    target: float


@dataclass(frozen=True)
class TrajectoryAnalysis:
    average_reward: float
    convergence: Convergence
    recommended_adjustment: str
    sample_count: int
    trend: Optional[float] = None
