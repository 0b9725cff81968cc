# disagreement.py
# =============================================================================
# 委员会分歧分析 / Committee disagreement analysis
#
# 纯函数：将三个角色的分数归一到 0-100（bear 风险分取反），
# 以 10 分制 sigma 单位计算样本标准差，超过阈值即标记高分歧。
# / Pure function: normalize the three role scores to 0-100 (bear risk
# inverted), take the sample standard deviation in 10-point sigma units and
# flag high disagreement above a threshold.
# =============================================================================

"""Disagreement metrics across the bear, bull and judge perspectives."""

from __future__ import annotations

import math
import statistics
from typing import Dict, Mapping, Optional

from quorum.primitives.models import DisagreementMetrics

DEFAULT_SIGMA_THRESHOLD = 2.0


def _spread(values) -> float:
    return max(values) - min(values)


def dimensional_disagreement(
    dimension_scores: Mapping[str, Mapping[str, float]],
) -> Dict[str, float]:
    """维度级分歧：至少两个角色都打分的维度的极差（0-10）。

    / Per-dimension spread (max - min) for dimensions scored by two or more roles.
    Scores are clamped to 0-10 and non-finite values skipped; dimensions keep
    first-seen order.
    """
    by_dimension: Dict[str, list] = {}
    for scores in dimension_scores.values():
        for dimension, value in scores.items():
            number = float(value)
            if not math.isfinite(number):
                continue
            by_dimension.setdefault(dimension, []).append(min(10.0, max(0.0, number)))
    return {
        dimension: round(_spread(values), 2)
        for dimension, values in by_dimension.items()
        if len(values) >= 2
    }


def compute_committee_disagreement(
    bear_risk: float,
    bull_upside: float,
    judge_score: float,
    dimension_scores: Optional[Mapping[str, Mapping[str, float]]] = None,
    sigma_threshold: float = DEFAULT_SIGMA_THRESHOLD,
) -> DisagreementMetrics:
    """计算委员会分歧指标。 / Compute committee disagreement metrics.

    Args:
        bear_risk: Bear 风险分 (0-100, 越高越差)。 / Bear risk, higher is worse.
        bull_upside: Bull 上行分 (0-100)。 / Bull upside score.
        judge_score: Judge 总分 (0-100)。 / Judge overall score.
        dimension_scores: 角色 -> {维度: 0-10}，用于维度级分歧。
            / role -> {dimension: 0-10}, for per-dimension spread.
        sigma_threshold: 以 10 分制计的 sigma 阈值。 / Threshold in 10-point units.
    """
    normalized = {
        "bear": round(100.0 - float(bear_risk), 2),
        "bull": round(float(bull_upside), 2),
        "judge": round(float(judge_score), 2),
    }
    sigma_values = [value / 10.0 for value in normalized.values()]
    sigma = round(statistics.stdev(sigma_values), 4)

    spreads = dimensional_disagreement(dimension_scores or {})
    top_dimension = None
    if spreads:
        # 并列时取最先出现的维度 / ties keep the first-seen dimension
        top_dimension = max(spreads, key=spreads.get)

    high = sigma > sigma_threshold
    if top_dimension is not None:
        note = (
            f"Agents disagreed most on {top_dimension} "
            f"(spread: {spreads[top_dimension]:.2f}). "
            f"Overall score sigma: {sigma:.2f}."
        )
    else:
        note = (
            f"Overall score sigma: {sigma:.2f} across "
            f"{len(sigma_values)} agent score(s)."
        )
    if high:
        note = f"High committee disagreement. {note}"

    return DisagreementMetrics(
        overall_score_stddev=sigma,
        high_disagreement_flag=high,
        disagreement_note=note,
        normalized_scores=normalized,
        dimensional_disagreement=spreads,
        top_disagreement_dimension=top_dimension,
        compared_agents=len(sigma_values),
    )
