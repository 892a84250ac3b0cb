# ABOUTME: Implements the tabular Q-learning policy engine for instructional decisions.
# ABOUTME: Selects actions epsilon-greedily and learns from observed learner responses.

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..common.bounds import clamp, require_probability
from ..common.config import PolicyConfig, PolicyEngineConfig
from ..common.errors import PolicyNotFoundError, SnapshotValidationError
from .schemas import (
    ACTION_TYPE_POLICIES,
    ActionContext,
    LearningAction,
    Policy,
    ReinforcementLearningResult,
    RewardObservation,
    State,
    StateKey,
    TrajectoryAnalysis,
    proficiency_bucket,
    state_from_json,
    state_label,
    state_to_json,
)

logger = logging.getLogger(__name__)

DEFAULT_Q_VALUE = 0.5
EXPLORATION_EXPECTED_REWARD = 0.5
RESPONSE_REWARDS = {"positive": 0.8, "neutral": 0.4, "negative": -0.3}
IMPLICIT_REWARD_SCALE = 0.2

EPSILON_DECAY = 0.99
EPSILON_FLOOR = 0.01
DECAY_EVERY = 100

TRAJECTORY_WINDOW = 20
CONVERGENCE_TOLERANCE = 0.02
PERFORMANCE_TREND_WINDOW = 5


def build_state_key(context: ActionContext) -> StateKey:
    return StateKey(
        proficiency=proficiency_bucket(context.student_proficiency),
        learning_style=str(context.learning_style),
        motivation_level=str(context.motivation_level),
        time_of_day=str(context.time_of_day),
    )


def policy_for_action_type(action_type: str) -> Optional[str]:
    return ACTION_TYPE_POLICIES.get(action_type)


class PolicyEngine:
    """
    Epsilon-greedy Q-learning over a fixed set of decision domains.

    Q-values live in [0, 1] and unseen (state, action) pairs read as a neutral
    0.5. Rewards are derived from the learner's response to an action and fed
    back through the temporal-difference update:

        Q(s, a) <- Q(s, a) + alpha * (r + gamma * max_a' Q(s', a') - Q(s, a))
    """

    def __init__(
        self,
        config: Optional[PolicyEngineConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        config = config or PolicyEngineConfig()
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)
        self._policies: Dict[str, Policy] = {
            cfg.policy_id: _policy_from_config(cfg) for cfg in config.policies
        }
        self._q_table: Dict[str, Dict[Tuple[State, str], float]] = {}
        self._reward_history: Dict[str, List[float]] = {}
        # Counts rewards across all policies; drives exploration decay.
        self._observation_count = 0

    @property
    def observation_count(self) -> int:
        return self._observation_count

    def get_policy(self, policy_id: str) -> Policy:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        return copy.deepcopy(policy)

    def get_policies(self) -> List[Policy]:
        return [copy.deepcopy(p) for p in self._policies.values()]

    def tune_policy(
        self,
        policy_id: str,
        epsilon: Optional[float] = None,
        alpha: Optional[float] = None,
        gamma: Optional[float] = None,
    ) -> Policy:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)

        updates = {}
        if epsilon is not None:
            updates["epsilon"] = require_probability("epsilon", epsilon)
        if gamma is not None:
            updates["gamma"] = require_probability("gamma", gamma)
        if alpha is not None:
            alpha = require_probability("alpha", alpha)
            if alpha == 0.0:
                raise ValueError("alpha must be in (0, 1].")
            updates["alpha"] = alpha

        if updates:
            for name, value in updates.items():
                setattr(policy, name, value)
            policy.version += 1
        return copy.deepcopy(policy)

    def get_q_value(self, policy_id: str, state: State, action: str) -> float:
        return self._q_table.get(policy_id, {}).get((state, action), DEFAULT_Q_VALUE)

    def select_action(self, policy_id: str, state: State, actions: Sequence[str]) -> ReinforcementLearningResult:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise PolicyNotFoundError(policy_id)
        if not actions:
            raise ValueError(f"No candidate actions supplied for policy {policy_id}.")

        should_explore = self.rng.random() < policy.epsilon
        if should_explore:
            selected = actions[int(self.rng.integers(len(actions)))]
            expected_reward = EXPLORATION_EXPECTED_REWARD
        else:
            selected = _argmax_first(actions, [self.get_q_value(policy_id, state, a) for a in actions])
            expected_reward = self.get_q_value(policy_id, state, selected)

        return ReinforcementLearningResult(
            recommended_action=selected,
            expected_reward=clamp(expected_reward),
            exploration_probability=policy.epsilon,
            reasoning=self._reasoning(policy_id, state, selected, should_explore),
            is_exploration=should_explore,
        )

    def observe_reward(
        self,
        action: LearningAction,
        new_state: State,
        next_possible_actions: Sequence[str],
    ) -> Optional[RewardObservation]:
        """
        Feed the learner's response to an action back into the Q-table.

        Never raises for an unknown policy: the caller's learning loop keeps
        running and the observation is dropped.
        """

        policy_id = action.policy_id or policy_for_action_type(action.type)
        policy = self._policies.get(policy_id) if policy_id else None
        if policy is None:
            logger.debug("Dropping reward for action %s: no policy %r", action.action_id, policy_id)
            return None

        reward = self._calculate_reward(action)
        current_state = build_state_key(action.context)
        current_q = self.get_q_value(policy_id, current_state, action.content_id)

        if next_possible_actions:
            max_next_q = max(self.get_q_value(policy_id, new_state, a) for a in next_possible_actions)
        else:
            max_next_q = 0.0  # terminal: nothing left to bootstrap from
        target = reward + policy.gamma * max_next_q
        updated_q = clamp(current_q + policy.alpha * (target - current_q))
        self._q_table.setdefault(policy_id, {})[(current_state, action.content_id)] = updated_q

        self._reward_history.setdefault(policy_id, []).append(reward)

        # The decay cadence follows the global counter, not a per-policy one:
        # whichever policy receives the 100th, 200th, ... reward is decayed.
        self._observation_count += 1
        if self._observation_count % DECAY_EVERY == 0:
            self._decay_exploration(policy)

        return RewardObservation(
            policy_id=policy_id,
            state=current_state,
            action=action.content_id,
            reward=reward,
            previous_q=current_q,
            updated_q=updated_q,
            target=target,
        )

    def analyze_trajectory(self, policy_id: str) -> TrajectoryAnalysis:
        rewards = self._reward_history.get(policy_id, [])
        count = len(rewards)

        if count < 2:
            return TrajectoryAnalysis(
                average_reward=float(rewards[0]) if rewards else 0.0,
                convergence="insufficient_data",
                recommended_adjustment="Insufficient data",
                sample_count=count,
            )

        average_reward = float(np.mean(rewards))

        # Short histories compare their two halves instead of fixed windows.
        recent_size = TRAJECTORY_WINDOW if count > TRAJECTORY_WINDOW else count // 2
        recent = rewards[count - recent_size:]
        older = rewards[max(0, count - recent_size - TRAJECTORY_WINDOW):count - recent_size]
        trend = float(np.mean(recent) - np.mean(older))

        if abs(trend) < CONVERGENCE_TOLERANCE:
            convergence = "converged"
        elif trend > 0:
            convergence = "converging"
        else:
            convergence = "diverging"

        if average_reward < 0.4:
            adjustment = "Increase exploration to find better strategies"
        elif average_reward > 0.8:
            adjustment = "Decrease exploration - good policy converged"
        else:
            adjustment = "Current policy performing adequately"

        return TrajectoryAnalysis(
            average_reward=average_reward,
            convergence=convergence,
            recommended_adjustment=adjustment,
            sample_count=count,
            trend=trend,
        )

    def get_policy_performance(self) -> Dict[str, Dict[str, Any]]:
        performance = {}
        for policy_id, rewards in self._reward_history.items():
            if not rewards:
                continue
            performance[policy_id] = {
                "average_reward": float(np.mean(rewards)),
                "max_reward": float(max(rewards)),
                "min_reward": float(min(rewards)),
                "sample_count": len(rewards),
                "trend": float(np.mean(rewards[-PERFORMANCE_TREND_WINDOW:])),
            }
        return performance

    def reward_frame(self) -> pd.DataFrame:
        """Reward histories in long format: one row per observed reward."""

        rows = [
            {"policy_id": policy_id, "step": step, "reward": reward}
            for policy_id, rewards in self._reward_history.items()
            for step, reward in enumerate(rewards)
        ]
        return pd.DataFrame(rows, columns=["policy_id", "step", "reward"])

    def reset_q_table(self) -> None:
        self._q_table.clear()
        self._reward_history.clear()
        logger.info("Q-table and reward histories reset")

    def export_policies(self) -> str:
        data = {
            "policies": [policy.to_dict() for policy in self._policies.values()],
            "q_table": [
                {"policy_id": policy_id, "state": state_to_json(state), "action": action, "value": value}
                for policy_id, entries in self._q_table.items()
                for (state, action), value in entries.items()
            ],
            "reward_history": {policy_id: list(rewards) for policy_id, rewards in self._reward_history.items()},
            "observation_count": self._observation_count,
        }
        return json.dumps(data)

    def import_policies(self, payload: Union[str, bytes, Mapping[str, Any]]) -> None:
        """
        Restore policies, Q-values and reward histories from an export.

        The snapshot is parsed completely before anything is committed, so a
        malformed payload leaves the engine untouched.
        """

        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise SnapshotValidationError(f"Policy snapshot is not valid JSON: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise SnapshotValidationError("Policy snapshot must be a JSON object.")

        try:
            policies = [_parse_policy(raw) for raw in payload.get("policies", [])]
            q_table = _parse_q_table(payload.get("q_table", []))
            reward_history = _parse_reward_history(payload.get("reward_history", {}))
            observation_count = payload.get("observation_count")
            if observation_count is None:
                observation_count = sum(len(r) for r in reward_history.values())
            if isinstance(observation_count, bool) or not isinstance(observation_count, int) or observation_count < 0:
                raise ValueError(f"observation_count must be a non-negative integer, got {observation_count!r}.")
        except (KeyError, TypeError, ValueError) as exc:
            raise SnapshotValidationError(f"Invalid policy snapshot: {exc}") from exc

        for policy in policies:
            self._policies[policy.policy_id] = policy
        self._q_table.update(q_table)
        self._reward_history.update(reward_history)
        self._observation_count = observation_count
        logger.info("Imported %d policies and %d Q-values", len(policies), sum(len(e) for e in q_table.values()))

    def _calculate_reward(self, action: LearningAction) -> float:
        reward = RESPONSE_REWARDS.get(action.student_response, 0.0)
        reward += self.rng.random() * IMPLICIT_REWARD_SCALE
        return clamp(reward)

    def _decay_exploration(self, policy: Policy) -> None:
        decayed = max(policy.epsilon * EPSILON_DECAY, EPSILON_FLOOR)
        if decayed != policy.epsilon:
            policy.epsilon = decayed
            policy.version += 1
            logger.debug("Decayed epsilon for %s to %.4f", policy.policy_id, decayed)

    def _reasoning(self, policy_id: str, state: State, action: str, is_exploration: bool) -> str:
        mode = "Exploration" if is_exploration else "Exploitation"
        q_value = self.get_q_value(policy_id, state, action)
        return (
            f'{mode}: Selected "{action}" for policy "{policy_id}". '
            f"Expected outcome: {q_value * 100:.0f}% success. State: {state_label(state)}"
        )


def _argmax_first(actions: Sequence[str], values: Sequence[float]) -> str:
    """Highest value wins; ties go to the earliest action."""
    best_index = 0
    for index, value in enumerate(values):
        if value > values[best_index]:
            best_index = index
    return actions[best_index]


def _policy_from_config(cfg: PolicyConfig) -> Policy:
    return Policy(
        policy_id=cfg.policy_id,
        description=cfg.description,
        state_space=cfg.state_space,
        action_space=list(cfg.action_space),
        epsilon=cfg.epsilon,
        alpha=cfg.alpha,
        gamma=cfg.gamma,
    )


def _parse_policy(raw: Mapping[str, Any]) -> Policy:
    cfg = PolicyConfig(
        policy_id=str(raw["policy_id"]),
        description=str(raw.get("description", "")),
        state_space=str(raw.get("state_space", "")),
        action_space=list(raw.get("action_space", [])),
        epsilon=raw["epsilon"],
        alpha=raw["alpha"],
        gamma=raw["gamma"],
    )
    policy = _policy_from_config(cfg)
    version = raw.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise ValueError(f"Policy {cfg.policy_id}: version must be a positive integer.")
    policy.version = version
    return policy


def _parse_q_table(entries: Sequence[Mapping[str, Any]]) -> Dict[str, Dict[Tuple[State, str], float]]:
    q_table: Dict[str, Dict[Tuple[State, str], float]] = {}
    for entry in entries:
        policy_id = str(entry["policy_id"])
        state = state_from_json(entry["state"])
        value = require_probability(f"Q[{policy_id}]", entry["value"])
        q_table.setdefault(policy_id, {})[(state, str(entry["action"]))] = value
    return q_table


def _parse_reward_history(raw: Mapping[str, Sequence[float]]) -> Dict[str, List[float]]:
    if not isinstance(raw, Mapping):
        raise ValueError("reward_history must map policy ids to reward lists.")
    return {
        str(policy_id): [require_probability(f"reward[{policy_id}]", r) for r in rewards]
        for policy_id, rewards in raw.items()
    }
