# ABOUTME: Implements Bayesian Knowledge Tracing over a table of per-skill mastery records.
# ABOUTME: Updates beliefs per answer and supports JSON export/import of the skill table.

from __future__ import annotations

import copy
import json
import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..common.bounds import clamp, require_probability
from ..common.config import KnowledgeTracingConfig
from ..common.errors import SnapshotValidationError
from .schemas import (
    MASTERY_THRESHOLD,
    STRUGGLING_MIN_ATTEMPTS,
    STRUGGLING_THRESHOLD,
    KnowledgeTraceResult,
    RecommendedAction,
    SkillMasteryRecord,
    utc_now,
)

logger = logging.getLogger(__name__)

UNKNOWN_SKILL_DAYS_TO_MASTERY = 7
MAX_CONFIDENCE = 0.95


class KnowledgeTracer:
    """
    Bayesian Knowledge Tracing (BKT) over independent skills.

    Each answer is handled in two steps:
    1. Condition the mastery belief on the observation with Bayes' rule,
       using p_correct / p_guess as the observation likelihoods.
    2. Apply the learning transition: every attempt, right or wrong, is an
       opportunity to learn, so p_known' = posterior + (1 - posterior) * p_transition.
    """

    def __init__(self, defaults: Optional[KnowledgeTracingConfig] = None):
        self.defaults = defaults or KnowledgeTracingConfig()
        self._skills: Dict[str, SkillMasteryRecord] = {}

    def __len__(self) -> int:
        return len(self._skills)

    def __contains__(self, skill_id: str) -> bool:
        return skill_id in self._skills

    def initialize_skill(
        self,
        skill_id: str,
        p_init: Optional[float] = None,
        p_transition: Optional[float] = None,
        p_correct: Optional[float] = None,
        p_guess: Optional[float] = None,
    ) -> SkillMasteryRecord:
        """Create (or re-create) a skill record from the given or default priors."""

        params = {
            "p_init": self.defaults.p_init if p_init is None else p_init,
            "p_transition": self.defaults.p_transition if p_transition is None else p_transition,
            "p_correct": self.defaults.p_correct if p_correct is None else p_correct,
            "p_guess": self.defaults.p_guess if p_guess is None else p_guess,
        }
        params = {name: require_probability(name, value) for name, value in params.items()}

        record = SkillMasteryRecord(skill_id=skill_id, p_known=params["p_init"], **params)
        self._skills[skill_id] = record
        return copy.copy(record)

    def update_knowledge(self, skill_id: str, is_correct: bool) -> KnowledgeTraceResult:
        record = self._skills.get(skill_id)
        if record is None:
            self.initialize_skill(skill_id)
            record = self._skills[skill_id]

        previous_knowledge = record.p_known

        if is_correct:
            likelihood_known, likelihood_unknown = record.p_correct, record.p_guess
        else:
            likelihood_known, likelihood_unknown = 1.0 - record.p_correct, 1.0 - record.p_guess

        posterior = _bayes_update(previous_knowledge, likelihood_known, likelihood_unknown)
        # The transition applies regardless of correctness (opportunity to learn).
        record.p_known = clamp(posterior + (1.0 - posterior) * record.p_transition)

        record.attempts += 1
        if is_correct:
            record.correct_count += 1
        record.last_updated = utc_now()

        return KnowledgeTraceResult(
            skill_id=skill_id,
            previous_knowledge=previous_knowledge,
            updated_knowledge=record.p_known,
            confidence=_estimate_confidence(record.attempts),
            predicted_next_correct_prob=_predict_correct(record),
            recommended_action=_recommend_action(record.p_known, record.attempts, is_correct),
        )

    def batch_update(self, responses: Iterable[Union[Tuple[str, bool], Mapping[str, Any]]]) -> List[KnowledgeTraceResult]:
        """
        Apply responses in order; each update sees the previous ones.

        ``is_correct`` must be a real boolean. The whole batch is checked
        before any skill is updated.
        """

        parsed = []
        for response in responses:
            if isinstance(response, Mapping):
                skill_id, is_correct = response["skill_id"], response["is_correct"]
            else:
                skill_id, is_correct = response
            if not isinstance(is_correct, (bool, np.bool_)):
                raise ValueError(f"is_correct for skill {skill_id} must be a bool, got {is_correct!r}.")
            parsed.append((skill_id, bool(is_correct)))

        return [self.update_knowledge(skill_id, is_correct) for skill_id, is_correct in parsed]

    def predict_next_attempt(self, skill_id: str) -> float:
        record = self._skills.get(skill_id)
        if record is None:
            return self.defaults.p_guess
        return _predict_correct(record)

    def estimate_time_to_mastery(self, skill_id: str, attempts_per_day: float = 1) -> int:
        """Rough number of days until p_known crosses the mastery threshold."""

        if attempts_per_day <= 0:
            raise ValueError(f"attempts_per_day must be positive, got {attempts_per_day}.")

        record = self._skills.get(skill_id)
        if record is None:
            return UNKNOWN_SKILL_DAYS_TO_MASTERY
        if record.p_known > MASTERY_THRESHOLD:
            return 0
        if record.p_transition <= 0:
            raise ValueError(f"Skill {skill_id} has p_transition=0 and never transitions to mastery.")

        expected_attempts = math.ceil((MASTERY_THRESHOLD - record.p_known) / record.p_transition)
        return max(1, math.ceil(expected_attempts / attempts_per_day))

    def get_knowledge_state(self, skill_id: str) -> Optional[SkillMasteryRecord]:
        record = self._skills.get(skill_id)
        return copy.copy(record) if record is not None else None

    def get_knowledge_progression(self, skill_id: str) -> Dict[str, Any]:
        record = self._skills.get(skill_id)
        if record is None:
            return {"attempts": 0, "p_known": 0.0, "mastery_percentage": 0}
        return {
            "attempts": record.attempts,
            "p_known": record.p_known,
            "mastery_percentage": int(round(record.p_known * 100)),
        }

    def get_all_knowledge_states(self) -> Dict[str, Dict[str, Any]]:
        """Dashboard summary keyed by skill id."""

        summary = {}
        for skill_id, record in self._skills.items():
            summary[skill_id] = {
                "skill_id": skill_id,
                "mastery": int(round(record.p_known * 100)),
                "attempts": record.attempts,
                "status": _status_label(record),
            }
        return summary

    def get_global_statistics(self) -> Dict[str, Any]:
        records = list(self._skills.values())
        if not records:
            return {
                "total_skills_tracked": 0,
                "average_mastery": 0.0,
                "mastered_count": 0,
                "struggling_count": 0,
                "total_attempts": 0,
            }

        mastery = np.array([r.p_known for r in records])
        return {
            "total_skills_tracked": len(records),
            "average_mastery": float(mastery.mean()),
            "mastered_count": int((mastery > MASTERY_THRESHOLD).sum()),
            "struggling_count": sum(1 for r in records if _is_struggling(r)),
            "total_attempts": sum(r.attempts for r in records),
        }

    def reset_skill(self, skill_id: str) -> None:
        """Return a skill to its prior; unknown skills are ignored."""

        record = self._skills.get(skill_id)
        if record is None:
            return
        record.p_known = record.p_init
        record.attempts = 0
        record.correct_count = 0
        record.last_updated = utc_now()

    def clear_states(self) -> None:
        self._skills.clear()

    def to_frame(self) -> pd.DataFrame:
        columns = [
            "skill_id",
            "p_init",
            "p_transition",
            "p_correct",
            "p_guess",
            "p_known",
            "attempts",
            "correct_count",
            "last_updated",
        ]
        if not self._skills:
            return pd.DataFrame(columns=columns)
        rows = []
        for record in self._skills.values():
            row = record.to_dict()
            row["last_updated"] = record.last_updated
            rows.append(row)
        return pd.DataFrame(rows, columns=columns)

    def export_states(self) -> str:
        return json.dumps({skill_id: record.to_dict() for skill_id, record in self._skills.items()})

    def import_states(self, payload: Union[str, bytes, Mapping[str, Any]]) -> int:
        """
        Merge an exported snapshot into the skill table.

        Every record is parsed and validated first; the table is only touched
        once the whole snapshot is known to be good. Returns the number of
        imported skills.
        """

        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise SnapshotValidationError(f"Knowledge snapshot is not valid JSON: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise SnapshotValidationError("Knowledge snapshot must be a JSON object keyed by skill id.")

        parsed = {}
        for skill_id, raw in payload.items():
            parsed[str(skill_id)] = _parse_record(str(skill_id), raw)

        self._skills.update(parsed)
        logger.debug("Imported %d skill records", len(parsed))
        return len(parsed)


def _bayes_update(prior: float, likelihood_known: float, likelihood_unknown: float) -> float:
    numerator = likelihood_known * prior
    denominator = numerator + likelihood_unknown * (1.0 - prior)
    if denominator == 0:
        return prior
    return clamp(numerator / denominator)


def _predict_correct(record: SkillMasteryRecord) -> float:
    return record.p_known * record.p_correct + (1.0 - record.p_known) * record.p_guess


def _estimate_confidence(attempts: int) -> float:
    return min(attempts / 10, MAX_CONFIDENCE)


def _recommend_action(p_known: float, attempts: int, last_correct: bool) -> RecommendedAction:
    if p_known > MASTERY_THRESHOLD and attempts >= 3:
        return "master"
    if attempts > STRUGGLING_MIN_ATTEMPTS and not last_correct:
        return "intervention"
    if attempts >= 2 and p_known < STRUGGLING_THRESHOLD:
        return "prereq"
    return "practice"


def _is_struggling(record: SkillMasteryRecord) -> bool:
    return record.attempts > STRUGGLING_MIN_ATTEMPTS and record.p_known < STRUGGLING_THRESHOLD


def _status_label(record: SkillMasteryRecord) -> str:
    if record.p_known > MASTERY_THRESHOLD:
        return "Mastered"
    if _is_struggling(record):
        return "Struggling"
    if record.attempts > 3:
        return "Practicing"
    return "Learning"


def _parse_record(skill_id: str, raw: Any) -> SkillMasteryRecord:
    if not isinstance(raw, Mapping):
        raise SnapshotValidationError(f"Skill {skill_id}: record must be an object.")

    try:
        probabilities = {
            name: require_probability(name, raw[name])
            for name in ("p_init", "p_transition", "p_correct", "p_guess", "p_known")
        }
        attempts = raw.get("attempts", 0)
        correct_count = raw.get("correct_count", 0)
        if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 0:
            raise ValueError(f"attempts must be a non-negative integer, got {attempts!r}.")
        if isinstance(correct_count, bool) or not isinstance(correct_count, int) or not 0 <= correct_count <= attempts:
            raise ValueError(f"correct_count must be an integer in [0, attempts], got {correct_count!r}.")
        last_updated = raw.get("last_updated")
        timestamp = datetime.fromisoformat(last_updated) if last_updated else utc_now()
    except KeyError as exc:
        raise SnapshotValidationError(f"Skill {skill_id}: missing field {exc.args[0]!r}.") from exc
    except (TypeError, ValueError) as exc:
        raise SnapshotValidationError(f"Skill {skill_id}: {exc}") from exc

    return SkillMasteryRecord(
        skill_id=skill_id,
        attempts=attempts,
        correct_count=correct_count,
        last_updated=timestamp,
        **probabilities,
    )
