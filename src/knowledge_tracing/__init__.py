# ABOUTME: Groups the Bayesian Knowledge Tracing engine and its record types.
# ABOUTME: Re-exports the tracer, mastery record, and update result.

from .schemas import KnowledgeTraceResult, SkillMasteryRecord
from .tracer import KnowledgeTracer

__all__ = [
    "KnowledgeTraceResult",
    "KnowledgeTracer",
    "SkillMasteryRecord",
]
