# ABOUTME: Unit tests for the Bayesian Knowledge Tracing engine.
# ABOUTME: Checks posterior arithmetic, recommended actions, statistics, and snapshot round-trips.

import json

import numpy as np
import pytest

from src.common.config import KnowledgeTracingConfig
from src.common.errors import SnapshotValidationError
from src.knowledge_tracing import KnowledgeTracer


def _expected_after_correct(prior, p_correct=0.95, p_guess=0.2, p_transition=0.3):
    posterior = p_correct * prior / (p_correct * prior + p_guess * (1 - prior))
    return posterior + (1 - posterior) * p_transition


def test_initialize_skill_sets_prior():
    tracer = KnowledgeTracer()
    record = tracer.initialize_skill("algebra")
    assert record.p_known == record.p_init == 0.1
    assert record.attempts == 0
    assert record.correct_count == 0
    assert record.p_slip == pytest.approx(0.05)


def test_initialize_skill_overrides_and_reinitializes():
    tracer = KnowledgeTracer()
    tracer.update_knowledge("geometry", True)
    record = tracer.initialize_skill("geometry", p_init=0.4, p_guess=0.1)
    assert record.p_known == 0.4
    assert record.p_guess == 0.1
    assert record.p_transition == 0.3
    assert tracer.get_knowledge_state("geometry").attempts == 0


def test_initialize_skill_rejects_out_of_range_parameters():
    tracer = KnowledgeTracer()
    with pytest.raises(ValueError):
        tracer.initialize_skill("algebra", p_guess=1.2)
    assert "algebra" not in tracer


def test_first_correct_answer_matches_bayes_then_transition():
    tracer = KnowledgeTracer()
    tracer.initialize_skill("algebra")
    result = tracer.update_knowledge("algebra", True)

    posterior = 0.95 * 0.1 / (0.95 * 0.1 + 0.2 * 0.9)
    assert posterior == pytest.approx(0.345454, abs=1e-6)
    assert result.previous_knowledge == 0.1
    assert result.updated_knowledge == pytest.approx(posterior + (1 - posterior) * 0.3)
    assert result.updated_knowledge == pytest.approx(0.541818, abs=1e-6)
    assert result.confidence == pytest.approx(0.1)
    assert result.recommended_action == "practice"


def test_wrong_answer_still_applies_learning_transition():
    tracer = KnowledgeTracer()
    result = tracer.update_knowledge("fractions", False)

    posterior = 0.05 * 0.1 / (0.05 * 0.1 + 0.8 * 0.9)
    assert result.updated_knowledge == pytest.approx(posterior + (1 - posterior) * 0.3)
    # An incorrect answer is still an opportunity to learn.
    assert result.updated_knowledge > result.previous_knowledge


def test_update_auto_initializes_unknown_skill():
    tracer = KnowledgeTracer()
    result = tracer.update_knowledge("unseen", True)
    assert result.previous_knowledge == 0.1
    assert "unseen" in tracer


def test_p_known_stays_in_unit_interval():
    tracer = KnowledgeTracer()
    tracer.initialize_skill("edge", p_init=0.0, p_transition=1.0, p_correct=1.0, p_guess=0.0)
    tracer.initialize_skill("flat", p_init=1.0, p_transition=0.0, p_correct=0.0, p_guess=1.0)
    rng = np.random.default_rng(7)
    for _ in range(200):
        for skill in ("edge", "flat", "default"):
            result = tracer.update_knowledge(skill, bool(rng.random() < 0.5))
            assert 0.0 <= result.updated_knowledge <= 1.0
            assert 0.0 <= result.predicted_next_correct_prob <= 1.0


def test_repeated_correct_answers_reach_mastery():
    tracer = KnowledgeTracer()
    results = [tracer.update_knowledge("algebra", True) for _ in range(3)]

    assert results[1].updated_knowledge == pytest.approx(_expected_after_correct(results[0].updated_knowledge))
    assert results[2].updated_knowledge > 0.85
    assert results[2].recommended_action == "master"


def test_repeated_wrong_answers_trigger_intervention():
    tracer = KnowledgeTracer()
    results = [tracer.update_knowledge("algebra", False) for _ in range(6)]

    # Belief hovers near 0.32, so the prereq rule never fires with default priors.
    assert [r.recommended_action for r in results[:5]] == ["practice"] * 5
    assert results[5].recommended_action == "intervention"


def test_low_transition_skill_recommends_prerequisites():
    tracer = KnowledgeTracer()
    tracer.initialize_skill("calculus", p_transition=0.05)
    first = tracer.update_knowledge("calculus", False)
    second = tracer.update_knowledge("calculus", False)
    assert first.recommended_action == "practice"
    assert second.updated_knowledge < 0.3
    assert second.recommended_action == "prereq"


def test_confidence_caps_at_095():
    tracer = KnowledgeTracer()
    results = [tracer.update_knowledge("algebra", True) for _ in range(12)]
    assert results[4].confidence == pytest.approx(0.5)
    assert results[-1].confidence == 0.95


def test_predict_next_attempt_is_bounded_by_guess_and_correct():
    tracer = KnowledgeTracer()
    assert tracer.predict_next_attempt("unknown") == 0.2

    rng = np.random.default_rng(3)
    for _ in range(50):
        tracer.update_knowledge("algebra", bool(rng.random() < 0.6))
        prediction = tracer.predict_next_attempt("algebra")
        assert 0.2 <= prediction <= 0.95


def test_estimate_time_to_mastery():
    tracer = KnowledgeTracer()
    assert tracer.estimate_time_to_mastery("unknown") == 7

    tracer.initialize_skill("algebra")
    # ceil((0.85 - 0.1) / 0.3) = 3 attempts
    assert tracer.estimate_time_to_mastery("algebra") == 3
    assert tracer.estimate_time_to_mastery("algebra", attempts_per_day=2) == 2

    for _ in range(3):
        tracer.update_knowledge("algebra", True)
    assert tracer.estimate_time_to_mastery("algebra") == 0


def test_estimate_time_to_mastery_is_positive_below_threshold():
    tracer = KnowledgeTracer()
    tracer.initialize_skill("boundary", p_init=0.85)
    assert tracer.estimate_time_to_mastery("boundary") == 1

    with pytest.raises(ValueError):
        tracer.estimate_time_to_mastery("boundary", attempts_per_day=0)


def test_batch_update_is_sequential():
    tracer = KnowledgeTracer()
    results = tracer.batch_update(
        [("algebra", True), {"skill_id": "algebra", "is_correct": False}, ("geometry", True)]
    )
    assert len(results) == 3
    assert results[1].previous_knowledge == results[0].updated_knowledge
    assert results[2].previous_knowledge == 0.1
    assert tracer.get_knowledge_state("algebra").attempts == 2


def test_global_statistics():
    tracer = KnowledgeTracer()
    empty = tracer.get_global_statistics()
    assert empty == {
        "total_skills_tracked": 0,
        "average_mastery": 0.0,
        "mastered_count": 0,
        "struggling_count": 0,
        "total_attempts": 0,
    }

    for _ in range(3):
        tracer.update_knowledge("mastered", True)
    tracer.initialize_skill("stuck", p_transition=0.01)
    for _ in range(6):
        tracer.update_knowledge("stuck", False)

    stats = tracer.get_global_statistics()
    assert stats["total_skills_tracked"] == 2
    assert stats["mastered_count"] == 1
    assert stats["struggling_count"] == 1
    assert stats["total_attempts"] == 9
    expected_mean = (tracer.get_knowledge_state("mastered").p_known + tracer.get_knowledge_state("stuck").p_known) / 2
    assert stats["average_mastery"] == pytest.approx(expected_mean)


def test_dashboard_summary_labels():
    tracer = KnowledgeTracer()
    tracer.update_knowledge("new", True)
    for _ in range(3):
        tracer.update_knowledge("strong", True)
    for _ in range(4):
        tracer.update_knowledge("practicing", False)

    summary = tracer.get_all_knowledge_states()
    assert summary["new"]["status"] == "Learning"
    assert summary["strong"]["status"] == "Mastered"
    assert summary["practicing"]["status"] == "Practicing"
    assert summary["strong"]["mastery"] == round(tracer.get_knowledge_state("strong").p_known * 100)


def test_reset_skill_restores_prior():
    tracer = KnowledgeTracer()
    tracer.initialize_skill("algebra", p_init=0.25)
    tracer.update_knowledge("algebra", True)
    tracer.reset_skill("algebra")
    tracer.reset_skill("missing")

    record = tracer.get_knowledge_state("algebra")
    assert record.p_known == 0.25
    assert record.attempts == 0
    assert tracer.get_knowledge_progression("algebra") == {"attempts": 0, "p_known": 0.25, "mastery_percentage": 25}


def test_custom_defaults_apply_to_lazy_initialization():
    tracer = KnowledgeTracer(KnowledgeTracingConfig(p_init=0.5, p_guess=0.1))
    assert tracer.predict_next_attempt("unseen") == 0.1
    result = tracer.update_knowledge("unseen", True)
    assert result.previous_knowledge == 0.5


def test_to_frame_lists_every_skill():
    tracer = KnowledgeTracer()
    assert tracer.to_frame().empty
    tracer.update_knowledge("a", True)
    tracer.update_knowledge("b", False)
    frame = tracer.to_frame()
    assert list(frame["skill_id"]) == ["a", "b"]
    assert list(frame["correct_count"]) == [1, 0]


def test_export_import_round_trip_reproduces_updates():
    original = KnowledgeTracer()
    original.initialize_skill("custom", p_transition=0.2, p_guess=0.25)
    original.batch_update([("algebra", True), ("algebra", False), ("custom", True)])

    restored = KnowledgeTracer()
    assert restored.import_states(original.export_states()) == 2

    follow_up = [("algebra", True), ("custom", False), ("custom", True)]
    assert original.batch_update(follow_up) == restored.batch_update(follow_up)
    assert restored.get_knowledge_state("custom").p_guess == 0.25


def test_import_is_atomic_on_invalid_record():
    tracer = KnowledgeTracer()
    tracer.update_knowledge("existing", True)
    before = tracer.export_states()

    snapshot = json.loads(before)
    snapshot["fresh"] = dict(snapshot["existing"], skill_id="fresh")
    snapshot["broken"] = dict(snapshot["existing"], skill_id="broken", attempts=1, correct_count=4)

    with pytest.raises(SnapshotValidationError):
        tracer.import_states(json.dumps(snapshot))

    assert "fresh" not in tracer
    assert tracer.export_states() == before


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[1, 2, 3]",
        json.dumps({"algebra": {"p_init": 0.1}}),
        json.dumps({"algebra": {"p_init": 0.1, "p_transition": 0.3, "p_correct": 0.95, "p_guess": 0.2, "p_known": 1.4}}),
        json.dumps({"algebra": "oops"}),
    ],
)
def test_import_rejects_malformed_payloads(payload):
    tracer = KnowledgeTracer()
    with pytest.raises(SnapshotValidationError):
        tracer.import_states(payload)
    assert len(tracer) == 0


def test_clear_states_drops_every_skill():
    tracer = KnowledgeTracer()
    tracer.batch_update([("a", True), ("b", False)])
    tracer.clear_states()
    assert len(tracer) == 0
    assert tracer.get_knowledge_state("a") is None
    assert tracer.get_knowledge_progression("a") == {"attempts": 0, "p_known": 0.0, "mastery_percentage": 0}


@pytest.mark.parametrize("flag", ["False", 0, 1, None])
def test_batch_update_rejects_non_boolean_outcomes(flag):
    tracer = KnowledgeTracer()
    with pytest.raises(ValueError):
        tracer.batch_update([("algebra", True), {"skill_id": "geometry", "is_correct": flag}])
    # Nothing from the rejected batch is applied.
    assert len(tracer) == 0


def test_batch_update_accepts_numpy_booleans():
    tracer = KnowledgeTracer()
    results = tracer.batch_update([("algebra", np.bool_(False))])
    assert tracer.get_knowledge_state("algebra").correct_count == 0
    assert results[0].updated_knowledge > results[0].previous_knowledge
