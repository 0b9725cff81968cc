# quorum/__init__.py
# =============================================================================
# Quorum: 三角色 LLM 投资委员会想法评估引擎。 / Three-role LLM investment-committee idea evaluator.
# =============================================================================

"""Quorum: 三角色 LLM 投资委员会想法评估引擎。 / Three-role LLM investment-committee idea evaluator."""

from quorum.api.evaluate import EvaluationService, evaluate_idea
from quorum.errors import (
    CommitteeError,
    EvaluationRejected,
    EvaluationTimeoutError,
    InvalidSubmissionError,
    RoleFailureError,
    SchemaViolationError,
)
from quorum.primitives.models import (
    CommitteeResult,
    GroundingSnapshot,
    IdeaSubmission,
    PredictionReflectionInput,
)

__version__ = "0.1.0"
__all__ = [
    "CommitteeError",
    "CommitteeResult",
    "EvaluationRejected",
    "EvaluationService",
    "EvaluationTimeoutError",
    "GroundingSnapshot",
    "IdeaSubmission",
    "InvalidSubmissionError",
    "PredictionReflectionInput",
    "RoleFailureError",
    "SchemaViolationError",
    "evaluate_idea",
    "__version__",
]
