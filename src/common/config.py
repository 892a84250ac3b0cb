# ABOUTME: Loads engine configuration from YAML into typed dataclasses.
# ABOUTME: Falls back to the built-in BKT priors and policy table when sections are absent.

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .bounds import require_probability


@dataclass
class KnowledgeTracingConfig:
    """Default BKT priors applied to skills initialized without overrides."""

    p_init: float = 0.1
    p_transition: float = 0.3
    p_correct: float = 0.95
    p_guess: float = 0.2

    def __post_init__(self):
        for name in ("p_init", "p_transition", "p_correct", "p_guess"):
            setattr(self, name, require_probability(name, getattr(self, name)))


@dataclass
class PolicyConfig:
    policy_id: str
    description: str
    state_space: str
    action_space: List[str]
    epsilon: float
    alpha: float
    gamma: float

    def __post_init__(self):
        if not self.policy_id:
            raise ValueError("policy_id must be a non-empty string.")
        self.epsilon = require_probability(f"{self.policy_id}.epsilon", self.epsilon)
        self.gamma = require_probability(f"{self.policy_id}.gamma", self.gamma)
        self.alpha = require_probability(f"{self.policy_id}.alpha", self.alpha)
        if self.alpha == 0.0:
            raise ValueError(f"{self.policy_id}.alpha must be in (0, 1].")
        self.action_space = [str(a) for a in self.action_space]


def default_policy_configs() -> List[PolicyConfig]:
    return [
        PolicyConfig(
            policy_id="content_selection",
            description="Optimizes which type of content to present",
            state_space="student proficiency, learning style, motivation",
            action_space=["video", "article", "interactive", "practice", "gamified"],
            epsilon=0.15,
            alpha=0.1,
            gamma=0.9,
        ),
        PolicyConfig(
            policy_id="difficulty_progression",
            description="Determines appropriate difficulty level",
            state_space="current mastery, recent performance, engagement",
            action_space=["decrease", "maintain", "increase"],
            epsilon=0.1,
            alpha=0.15,
            gamma=0.95,
        ),
        PolicyConfig(
            policy_id="learning_strategy",
            description="Selects optimal learning strategy",
            state_space="knowledge state, time available, learning pace",
            action_space=["spaced_repetition", "active_recall", "interleaving", "elaboration"],
            epsilon=0.2,
            alpha=0.12,
            gamma=0.9,
        ),
        PolicyConfig(
            policy_id="timing_optimization",
            description="Optimizes when to present content",
            state_space="time of day, student availability, fatigue level",
            action_space=["immediate", "after_break", "morning", "afternoon", "evening"],
            epsilon=0.1,
            alpha=0.08,
            gamma=0.85,
        ),
    ]


@dataclass
class PolicyEngineConfig:
    policies: List[PolicyConfig] = field(default_factory=default_policy_configs)
    seed: Optional[int] = None


@dataclass
class ForecastConfig:
    retrain_every: int = 100

    def __post_init__(self):
        if int(self.retrain_every) <= 0:
            raise ValueError("retrain_every must be a positive integer.")
        self.retrain_every = int(self.retrain_every)


@dataclass
class EngineConfig:
    knowledge_tracing: KnowledgeTracingConfig = field(default_factory=KnowledgeTracingConfig)
    policy: PolicyEngineConfig = field(default_factory=PolicyEngineConfig)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Read a YAML config; a missing path yields the built-in defaults."""

    if config_path is None:
        return EngineConfig()

    with open(config_path) as f:
        cfg = yaml.safe_load(f) or {}

    if not isinstance(cfg, Mapping):
        raise ValueError(f"Config at {config_path} must be a mapping, got {type(cfg).__name__}.")
    return config_from_mapping(cfg)


def config_from_mapping(cfg: Mapping[str, Any]) -> EngineConfig:
    kt_cfg = cfg.get("knowledge_tracing") or {}
    policy_cfg = cfg.get("policy") or {}
    forecast_cfg = cfg.get("forecast") or {}

    try:
        knowledge_tracing = KnowledgeTracingConfig(**(kt_cfg.get("defaults") or {}))
        raw_policies = policy_cfg.get("policies")
        policies = (
            [PolicyConfig(**entry) for entry in raw_policies]
            if raw_policies
            else default_policy_configs()
        )
        forecast = ForecastConfig(**forecast_cfg)
    except TypeError as exc:
        raise ValueError(f"Unexpected config key: {exc}") from exc

    seen: Dict[str, int] = {}
    for policy in policies:
        seen[policy.policy_id] = seen.get(policy.policy_id, 0) + 1
    duplicates = sorted(pid for pid, count in seen.items() if count > 1)
    if duplicates:
        raise ValueError(f"Duplicate policy ids in config: {', '.join(duplicates)}")

    seed = policy_cfg.get("seed")
    return EngineConfig(
        knowledge_tracing=knowledge_tracing,
        policy=PolicyEngineConfig(policies=policies, seed=None if seed is None else int(seed)),
        forecast=forecast,
    )
