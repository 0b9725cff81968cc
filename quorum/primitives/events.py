# events.py
# =============================================================================
# 评估进度事件: 供外部应用实时获取评估状态。
# =============================================================================

"""Evaluation progress events for external integration."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class EvaluationEvent:
    """评估过程中的结构化进度事件。

    外部应用通过注册 on_progress 回调接收此类事件（SSE 流、日志面板等）。

    Attributes:
        type: 事件类型。
            - "stage_start": 阶段开始
            - "stage_end": 阶段结束
            - "role_retry": 角色切换备用模型重试
            - "repair": 校验器触发修复轮
            - "error": 发生错误
        stage: 当前阶段 ("CLASSIFY" | "ROLES" | "JUDGE" | "VERIFY" | "ASSEMBLE")。
        run_id: 本次评估的唯一标识。
        timestamp: 单调时钟（秒）。
        progress: 总进度 (0.0 ~ 1.0)。
        role: 相关角色（bear / bull / judge）。
        detail: 附加数据，结构因 type 而异。
    """

    type: str
    stage: str
    run_id: str
    timestamp: float = field(default_factory=time.monotonic)
    progress: float = 0.0
    role: Optional[str] = None
    detail: Optional[Dict[str, Any]] = None
