"""Recovery: confidence scoring, reconstruction, resolution and resume."""

from .confidence import (
    AUTO_RESUME_THRESHOLD,
    ConfidenceResult,
    ContextSource,
    ValidityChecks,
    collect_validity,
    confidence_level,
    meets_auto_resume_threshold,
    score,
)
from .reconstructor import ContextReconstructor, ReconstructedContext, ResumeSummary
from .resolver import (
    InstanceResolver,
    MultipleMatches,
    NoMatch,
    Resolution,
    ResolutionStrategy,
    Resolved,
)
from .resume import ResumeResponse, ResumeService, ResumeStatus, parse_resume_command

__all__ = [
    "AUTO_RESUME_THRESHOLD",
    "ConfidenceResult",
    "ContextReconstructor",
    "ContextSource",
    "InstanceResolver",
    "MultipleMatches",
    "NoMatch",
    "ReconstructedContext",
    "Resolution",
    "ResolutionStrategy",
    "Resolved",
    "ResumeResponse",
    "ResumeService",
    "ResumeStatus",
    "ResumeSummary",
    "ValidityChecks",
    "collect_validity",
    "confidence_level",
    "meets_auto_resume_threshold",
    "parse_resume_command",
    "score",
]
