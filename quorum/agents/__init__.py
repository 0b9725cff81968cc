# agents/__init__.py
# =============================================================================
# Quorum Agent 模块: 角色分析员、主审、预测复盘。 / Agent module: role analysts, judge & reflection.
# =============================================================================

from .analyst import RoleAnalyst
from .judge import JudgeAgent
from .reflector import ReflectionAgent

__all__ = [
    "RoleAnalyst",
    "JudgeAgent",
    "ReflectionAgent",
]
