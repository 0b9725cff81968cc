# calibration.py
# =============================================================================
# 加权聚合与分数校准 / Weighted aggregation and score calibration
#
# 包含 / Contains:
#   - 角色加权总分 / role-weighted committee score
#   - 证据覆盖率与线性校准曲线 / evidence coverage and the linear calibration curve
#   - 置信度推导与辩论分歧指数 / confidence derivation and debate disagreement index
# =============================================================================

"""Weighted aggregation, evidence coverage, score calibration and confidence.

All functions are pure. The calibration curve is linear in evidence
coverage around a pivot,

    calibrated = raw + span * (coverage - pivot) [+ citation_bonus] [- penalties]

clamped to [0, 100], so it is non-decreasing in coverage and bounded. The
span, pivot, bonus and penalties come from CommitteeSettings.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from quorum.domain.roles import committee_weights
from quorum.engine.structured import extract_citations
from quorum.primitives.models import (
    CommitteeRole,
    CommitteeSettings,
    IdeaSubmission,
    ProjectDomain,
    RoleAnalysis,
    StructuredAnalysis,
    WeightedScore,
)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


# ---- Weighted score ----


def compute_weighted_score(
    bear: RoleAnalysis,
    bull: RoleAnalysis,
    judge_score: float,
) -> WeightedScore:
    """0.3 x bear + 0.3 x bull + 0.4 x judge over normalized 0-100 scores."""
    weights = committee_weights()
    components = {
        CommitteeRole.BEAR.value: _clamp(bear.normalized_score),
        CommitteeRole.BULL.value: _clamp(bull.normalized_score),
        CommitteeRole.JUDGE.value: _clamp(judge_score),
    }
    total = math.fsum(
        weights[CommitteeRole(role)] * value for role, value in components.items()
    )
    return WeightedScore(
        score=round(total, 1),
        components=components,
        weights={role.value: weight for role, weight in weights.items()},
    )


# ---- Evidence coverage ----


def compute_evidence_coverage(
    analysis: StructuredAnalysis,
    available_tags: Iterable[str],
) -> float:
    """Share of claims citing grounding that was actually supplied.

    Claims are the dimension sections plus the EVIDENCE bullet lines.
    [SUBMISSION] citations do not count as external evidence.
    """
    available = set(available_tags)
    claims: List[Tuple[str, ...]] = [dim.citations for dim in analysis.dimensions]
    claims.extend(extract_citations(line) for line in analysis.evidence_lines)
    if not claims:
        return 0.0
    covered = sum(1 for citations in claims if available.intersection(citations))
    return round(covered / len(claims), 4)


# ---- Calibration ----


@dataclass(frozen=True)
class CalibrationSignals:
    evidence_coverage: float
    has_citations: bool = False
    domain: ProjectDomain = ProjectDomain.OTHER
    description_length: int = 0
    has_launch_plan: bool = True


@dataclass(frozen=True)
class CalibrationResult:
    score: float
    adjustment: float
    notes: Tuple[str, ...] = field(default_factory=tuple)


def signals_for(
    submission: IdeaSubmission,
    domain: ProjectDomain,
    analysis: StructuredAnalysis,
    available_tags: Sequence[str],
) -> CalibrationSignals:
    coverage = compute_evidence_coverage(analysis, available_tags)
    cited = any(
        set(dim.citations).intersection(available_tags) for dim in analysis.dimensions
    )
    return CalibrationSignals(
        evidence_coverage=coverage,
        has_citations=cited,
        domain=domain,
        description_length=len(submission.description.strip()),
        has_launch_plan=bool(submission.launch_liquidity_plan),
    )


def calibrate_score(
    raw_score: float,
    signals: CalibrationSignals,
    settings: Optional[CommitteeSettings] = None,
) -> CalibrationResult:
    settings = settings or CommitteeSettings()
    coverage = _clamp(signals.evidence_coverage, 0.0, 1.0)
    notes: List[str] = []

    adjustment = settings.calibration_span * (coverage - settings.calibration_pivot)
    notes.append(
        f"Evidence coverage {coverage:.0%} adjusted score by {adjustment:+.1f}."
    )
    if signals.has_citations and settings.citation_bonus:
        adjustment += settings.citation_bonus
        notes.append(f"Concrete grounding citations: {settings.citation_bonus:+.1f}.")
    if signals.description_length < settings.vague_description_chars:
        adjustment -= settings.vague_description_penalty
        notes.append(
            f"Description under {settings.vague_description_chars} characters: "
            f"-{settings.vague_description_penalty:.1f}."
        )
    if signals.domain is ProjectDomain.MEME_ASSET and not signals.has_launch_plan:
        adjustment -= settings.missing_launch_plan_penalty
        notes.append(
            "Meme asset without a launch/liquidity plan: "
            f"-{settings.missing_launch_plan_penalty:.1f}."
        )

    calibrated = round(_clamp(_clamp(raw_score) + adjustment), 1)
    return CalibrationResult(
        score=calibrated,
        adjustment=round(calibrated - _clamp(raw_score), 1),
        notes=tuple(notes),
    )


# ---- Confidence ----


def derive_confidence(
    evidence_coverage: float,
    verifier_status: str,
    fallback_used: bool = False,
    has_grounding: bool = True,
    high_disagreement: bool = False,
) -> Tuple[str, float]:
    """Confidence level and 0-100 score for the assembled result."""
    score = 70.0
    if evidence_coverage >= 0.8:
        score += 15
    elif evidence_coverage >= 0.5:
        score += 5
    else:
        score -= 15

    score += {"pass": 10, "repaired": -10, "hard_fail": -25}.get(verifier_status, -15)
    if fallback_used:
        score -= 10
    if not has_grounding:
        score -= 20
    if high_disagreement:
        score *= 0.85

    score = round(_clamp(score), 1)
    if score >= 75:
        return "high", score
    if score >= 45:
        return "medium", score
    return "low", score


# ---- Debate tension ----

_BEAR_VERDICT_SEVERITY = {"KILL": 1.0, "AVOID": 0.6, "SHORT": 0.3}
_BULL_VERDICT_CONVICTION = {"ALL IN": 1.0, "APE": 0.6, "LONG": 0.3}


def compute_debate_disagreement_index(bear: RoleAnalysis, bull: RoleAnalysis) -> float:
    """0-1 tension between the bear and bull cases.

    Risk/upside tension is how far both scores sit at their own extremes;
    verdict tension is how strongly both verdicts commit in opposite ways.
    """
    risk_upside_tension = min(bear.score, bull.score) / 100.0
    verdict_tension = (
        _BEAR_VERDICT_SEVERITY.get(bear.verdict, 0.5)
        * _BULL_VERDICT_CONVICTION.get(bull.verdict, 0.5)
    )
    return round(_clamp(risk_upside_tension * 0.6 + verdict_tension * 0.4, 0.0, 1.0), 3)
