# ABOUTME: Tests YAML configuration loading for the learner-modeling engines.
# ABOUTME: Covers defaults, overrides, and rejection of malformed settings.

from pathlib import Path

import pytest

from src.common.bounds import clamp, require_probability
from src.common.config import EngineConfig, KnowledgeTracingConfig, config_from_mapping, load_config

REPO_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "learner_core.yaml"


def test_missing_path_returns_defaults():
    cfg = load_config()
    assert cfg == EngineConfig()
    assert cfg.knowledge_tracing.p_correct == 0.95
    assert cfg.policy.seed is None
    assert cfg.forecast.retrain_every == 100


def test_repository_config_matches_built_in_policies():
    cfg = load_config(REPO_CONFIG)
    assert cfg.policy.seed == 42
    assert cfg.policy.policies == EngineConfig().policy.policies
    assert cfg.knowledge_tracing == KnowledgeTracingConfig()


def test_partial_yaml_overrides(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        "knowledge_tracing:\n"
        "  defaults:\n"
        "    p_init: 0.25\n"
        "policy:\n"
        "  seed: 7\n"
        "  policies:\n"
        "    - policy_id: pacing\n"
        "      description: Session pacing\n"
        "      state_space: fatigue\n"
        "      action_space: [slow, fast]\n"
        "      epsilon: 0.3\n"
        "      alpha: 0.2\n"
        "      gamma: 0.8\n"
    )
    cfg = load_config(path)
    assert cfg.knowledge_tracing.p_init == 0.25
    assert cfg.knowledge_tracing.p_transition == 0.3
    assert [p.policy_id for p in cfg.policy.policies] == ["pacing"]
    assert cfg.policy.policies[0].action_space == ["slow", "fast"]
    assert cfg.policy.seed == 7


def test_empty_yaml_is_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path) == EngineConfig()


@pytest.mark.parametrize(
    "mapping",
    [
        {"knowledge_tracing": {"defaults": {"p_guess": 1.5}}},
        {"knowledge_tracing": {"defaults": {"p_unknown": 0.1}}},
        {"forecast": {"retrain_every": 0}},
        {
            "policy": {
                "policies": [
                    {"policy_id": "p", "description": "", "state_space": "", "action_space": ["a"],
                     "epsilon": 0.1, "alpha": 0.0, "gamma": 0.9},
                ]
            }
        },
        {
            "policy": {
                "policies": [
                    {"policy_id": "p", "description": "", "state_space": "", "action_space": ["a"],
                     "epsilon": 0.1, "alpha": 0.1, "gamma": 0.9},
                    {"policy_id": "p", "description": "", "state_space": "", "action_space": ["b"],
                     "epsilon": 0.1, "alpha": 0.1, "gamma": 0.9},
                ]
            }
        },
    ],
)
def test_invalid_settings_raise_value_error(mapping):
    with pytest.raises(ValueError):
        config_from_mapping(mapping)


def test_non_mapping_yaml_is_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        load_config(path)


def test_numeric_guards():
    assert clamp(1.4) == 1.0
    assert clamp(-0.2) == 0.0
    assert clamp(float("nan")) == 0.0
    assert clamp(120, 0, 100) == 100
    assert require_probability("p", 1) == 1.0
    for bad in (None, True, "x", float("nan"), -0.01, 1.01):
        with pytest.raises(ValueError):
            require_probability("p", bad)
