# ABOUTME: Makes the shared common package importable across engines.
# ABOUTME: Re-exports configuration, numeric guards, and error types.

from .bounds import clamp, require_probability
from .config import EngineConfig, load_config
from .errors import LearnerCoreError, PolicyNotFoundError, SnapshotValidationError

__all__ = [
    "EngineConfig",
    "LearnerCoreError",
    "PolicyNotFoundError",
    "SnapshotValidationError",
    "clamp",
    "load_config",
    "require_probability",
]
