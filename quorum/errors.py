# errors.py
# =============================================================================
# 委员会评估异常体系 / Committee evaluation exception hierarchy
#
# 两类对调用方可见的失败 / Two caller-visible failure classes:
#   - EvaluationRejected: 质量门未通过，携带问题清单
#     / quality gate hard-fail, carries the issue list
#   - CommitteeError 其余子类: 基础设施失败，无部分结果
#     / any other CommitteeError: infrastructure failure, no partial result
# =============================================================================

"""Exceptions raised by the committee engine."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class CommitteeError(Exception):
    """评估失败的基类。 / Base class for evaluation failures."""
    pass


class RoleFailureError(CommitteeError):
    """角色主模型与备用模型均失败。 / Primary and fallback attempts both failed for a role."""

    def __init__(self, role: str, cause: Optional[BaseException] = None):
        self.role = role
        self.cause = cause
        super().__init__(
            f"Committee role '{role}' failed after fallback retry: {cause}"
        )


class EvaluationTimeoutError(CommitteeError):
    """整次评估超出时间预算。 / Whole evaluation exceeded its wall-clock budget."""
    pass


class EvaluationRejected(CommitteeError):
    """评估未通过质量检查（verifier hard_fail）。

    / The evaluation failed quality checks and must not be used.
    """

    ERROR_CODE = "evaluation_failed_quality_checks"

    def __init__(self, issues: List[Any], outcome: Any = None):
        self.issues = list(issues)
        self.outcome = outcome
        checks = ", ".join(sorted({issue.check for issue in self.issues})) or "unknown"
        super().__init__(f"Evaluation failed quality checks: {checks}")

    def to_payload(self) -> Dict[str, Any]:
        """Caller-facing rejection body."""
        return {
            "error": self.ERROR_CODE,
            "message": str(self),
            "issues": [issue.to_dict() for issue in self.issues],
        }


class SchemaViolationError(ValueError):
    """模型输出结构不符合角色约定。 / Model output does not match the role schema."""
    pass


class InvalidSubmissionError(ValueError):
    """输入缺少核心所需字段。 / Input is missing fields the core needs to run."""
    pass
