# ABOUTME: Declares the exception types shared by all learner-modeling engines.
# ABOUTME: Subclasses builtins so callers can catch KeyError/ValueError as usual.


class LearnerCoreError(Exception):
    """Base class for errors raised by the learner-modeling engines."""


class PolicyNotFoundError(LearnerCoreError, KeyError):
    """Raised when an action is requested from an unregistered policy."""

    def __init__(self, policy_id: str):
        super().__init__(policy_id)
        self.policy_id = policy_id

    def __str__(self) -> str:
        return f"Policy not found: {self.policy_id}"


class SnapshotValidationError(LearnerCoreError, ValueError):
    """Raised when an exported snapshot cannot be parsed or validated."""
