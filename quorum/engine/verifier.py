# verifier.py
# =============================================================================
# 质量校验器 / Quality verifier
#
# 职责 / Responsibilities:
#   - 对 JudgeSynthesis 运行固定的确定性检查集
#     / Run a fixed battery of deterministic checks on a JudgeSynthesis
#   - 任一 fatal/repairable 检查失败时，恰好执行一轮修复并重跑全部检查
#     / On any fatal/repairable failure, run exactly one repair round and re-check
#   - 结论分类：pass / repaired / hard_fail
#     / Classify the outcome as pass / repaired / hard_fail
#
# 严重级别 / Severity:
#   fatal       数值越界、缺少必需节；修复后仍失败即 hard_fail
#               / range violations, missing sections; still failing after repair is hard_fail
#   repairable  修复后仍失败降级为 quality warning
#               / downgraded to a quality warning if still failing after repair
#   soft        仅产生 quality warning，从不升级 / quality warning only, never escalates
# =============================================================================

"""Deterministic verification of judge output with one bounded repair round."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from quorum.engine.structured import (
    DIMENSION_SECTIONS,
    composed_score,
    parse_structured_analysis,
)
from quorum.primitives.models import (
    GROUNDING_TAGS,
    CommitteeSettings,
    JudgeSynthesis,
    StructuredAnalysis,
    VerificationIssue,
    VerificationLogEntry,
    VerifierOutcome,
)

logger = logging.getLogger(__name__)

FATAL = "fatal"
REPAIRABLE = "repairable"
SOFT = "soft"

RepairCallable = Callable[[JudgeSynthesis, Sequence[VerificationIssue]], Awaitable[JudgeSynthesis]]


@dataclass(frozen=True)
class _CheckContext:
    synthesis: JudgeSynthesis
    analysis: StructuredAnalysis
    settings: CommitteeSettings
    available_tags: Tuple[str, ...]


@dataclass(frozen=True)
class Check:
    name: str
    severity: str
    run: Callable[[_CheckContext], List[str]]


# ---- Checks (each returns a list of failure messages; empty means pass) ----


def _in_range(value, low: float, high: float) -> bool:
    return value is not None and value == value and low <= value <= high


def _check_overall_range(ctx: _CheckContext) -> List[str]:
    score = ctx.synthesis.overall_score
    if _in_range(score, 0, 100):
        return []
    return [f"overallScore {score} is outside 0-100"]


def _check_theme_ranges(ctx: _CheckContext) -> List[str]:
    failures = []
    for name, theme in ctx.synthesis.themes().items():
        if theme.score is None:
            failures.append(f"{name} score is missing")
        elif not _in_range(theme.score, 0, 100):
            failures.append(f"{name} score {theme.score} is outside 0-100")
    return failures


def _check_required_sections(ctx: _CheckContext) -> List[str]:
    failures = []
    summary = ctx.synthesis.summary
    if not summary.title.strip():
        failures.append("summary title is missing")
    if not summary.main_verdict.strip():
        failures.append("summary main verdict is missing")
    for name in DIMENSION_SECTIONS + ("OVERALL",):
        if name not in ctx.analysis.sections:
            failures.append(f"structuredAnalysis section '## {name}' is missing")
    return failures


def _check_sub_scores(ctx: _CheckContext) -> List[str]:
    failures = []
    for dimension in ctx.analysis.dimensions:
        if dimension.sub_score is None:
            failures.append(f"{dimension.name} has no 'Sub-score: X/10' line")
        elif not _in_range(dimension.sub_score, 0, 10):
            failures.append(f"{dimension.name} sub-score {dimension.sub_score} is outside 0-10")
    return failures


def _check_evidence_tags(ctx: _CheckContext) -> List[str]:
    return [
        f"{dimension.name} cites no evidence tag"
        for dimension in ctx.analysis.dimensions
        if not dimension.citations
    ]


def _check_composition(ctx: _CheckContext) -> List[str]:
    analysis = ctx.analysis
    if not analysis.has_overall:
        return []
    if not analysis.composition:
        return ["OVERALL has no composition line"]
    if analysis.final_score is None:
        return ["OVERALL has no 'Final score: X/10' line"]

    failures = []
    expected = composed_score(analysis)
    tolerance = ctx.settings.composition_tolerance
    if expected is not None and abs(expected - analysis.final_score) > tolerance:
        failures.append(
            f"final score {analysis.final_score}/10 does not match the composed "
            f"sub-scores ({expected:.2f}/10, tolerance {tolerance})"
        )
    overall = ctx.synthesis.overall_score
    if _in_range(overall, 0, 100):
        gap = abs(overall - analysis.final_score * 10)
        if gap > ctx.settings.overall_score_tolerance:
            failures.append(
                f"overallScore {overall} is {gap:.1f} points away from the "
                f"final score {analysis.final_score}/10"
            )
    return failures


def _check_recommendations(ctx: _CheckContext) -> List[str]:
    if ctx.synthesis.recommendations:
        return []
    return ["no recommendations were given"]


def _check_confidence_label(ctx: _CheckContext) -> List[str]:
    if not ctx.analysis.has_overall or ctx.analysis.confidence_label:
        return []
    return ["OVERALL has no HIGH/MEDIUM/LOW confidence label"]


def _check_uncited_grounding(ctx: _CheckContext) -> List[str]:
    cited = set()
    for dimension in ctx.analysis.dimensions:
        cited.update(dimension.citations)
    missing = [tag for tag in ctx.available_tags if tag not in cited]
    if not missing or len(missing) < len(ctx.available_tags):
        return []
    return [f"supplied grounding was never cited: {', '.join(missing)}"]


def _check_unknown_citations(ctx: _CheckContext) -> List[str]:
    cited = set()
    for dimension in ctx.analysis.dimensions:
        cited.update(dimension.citations)
    phantom = sorted(
        tag for tag in cited if tag in GROUNDING_TAGS and tag not in ctx.available_tags
    )
    if not phantom:
        return []
    return [f"cites grounding that was not supplied: {', '.join(phantom)}"]


CHECKS: Tuple[Check, ...] = (
    Check("overall_score_range", FATAL, _check_overall_range),
    Check("theme_score_range", FATAL, _check_theme_ranges),
    Check("required_sections", FATAL, _check_required_sections),
    Check("dimension_sub_scores", REPAIRABLE, _check_sub_scores),
    Check("evidence_tags", REPAIRABLE, _check_evidence_tags),
    Check("composition_consistency", REPAIRABLE, _check_composition),
    Check("recommendations_present", SOFT, _check_recommendations),
    Check("confidence_label", SOFT, _check_confidence_label),
    Check("uncited_grounding", SOFT, _check_uncited_grounding),
    Check("unsupported_citations", SOFT, _check_unknown_citations),
)


# ---- Results ----


@dataclass(frozen=True)
class CheckReport:
    issues: Tuple[VerificationIssue, ...]
    soft_warnings: Tuple[str, ...]
    internal_warnings: Tuple[str, ...]
    analysis: StructuredAnalysis
    checks_run: int

    @property
    def failed(self) -> Tuple[VerificationIssue, ...]:
        return tuple(i for i in self.issues if i.severity != SOFT)

    @property
    def fatal(self) -> Tuple[VerificationIssue, ...]:
        return tuple(i for i in self.issues if i.severity == FATAL)


@dataclass(frozen=True)
class VerificationRun:
    """校验后的 synthesis（可能已修复）与结论。 / Verified (possibly repaired) synthesis and outcome."""

    synthesis: JudgeSynthesis
    analysis: StructuredAnalysis
    outcome: VerifierOutcome


class QualityVerifier:
    """确定性质量门 + 单轮修复。 / Deterministic quality gate with one repair round."""

    def __init__(
        self,
        settings: Optional[CommitteeSettings] = None,
        checks: Sequence[Check] = CHECKS,
    ):
        self._settings = settings or CommitteeSettings()
        self._checks = tuple(checks)

    def run_checks(
        self,
        synthesis: JudgeSynthesis,
        available_tags: Sequence[str] = (),
    ) -> CheckReport:
        analysis = parse_structured_analysis(synthesis.structured_analysis)
        ctx = _CheckContext(synthesis, analysis, self._settings, tuple(available_tags))
        issues: List[VerificationIssue] = []
        soft: List[str] = []
        for check in self._checks:
            for message in check.run(ctx):
                issues.append(VerificationIssue(check.name, message, check.severity))
                if check.severity == SOFT:
                    soft.append(f"{check.name}: {message}")
        return CheckReport(
            issues=tuple(issues),
            soft_warnings=tuple(soft),
            internal_warnings=tuple(f"parser: {w}" for w in analysis.warnings),
            analysis=analysis,
            checks_run=len(self._checks),
        )

    async def verify(
        self,
        synthesis: JudgeSynthesis,
        repair: RepairCallable,
        available_tags: Sequence[str] = (),
    ) -> VerificationRun:
        """运行检查；失败时执行恰好一轮修复。 / Check, repairing at most once."""
        started = time.perf_counter()
        first = self.run_checks(synthesis, available_tags)
        failed_executions = _failed_check_count(first)

        if not first.failed:
            outcome = self._outcome(
                status="pass",
                issues=(),
                report=first,
                checks_run=first.checks_run,
                checks_failed=failed_executions,
                repairs=(0, 0),
                started=started,
            )
            return VerificationRun(synthesis, first.analysis, outcome)

        logger.warning(
            "Judge output failed %d check(s): %s; attempting one repair round",
            len(first.failed),
            ", ".join(sorted({i.check for i in first.failed})),
        )
        try:
            repaired = await asyncio.wait_for(
                repair(synthesis, first.failed),
                timeout=self._settings.repair_timeout,
            )
        except asyncio.TimeoutError:
            return self._repair_unavailable(
                synthesis, first, started, "repair call timed out"
            )
        except Exception as exc:
            return self._repair_unavailable(
                synthesis, first, started, f"repair call failed: {exc}"
            )

        second = self.run_checks(repaired, available_tags)
        checks_run = first.checks_run + second.checks_run
        checks_failed = failed_executions + _failed_check_count(second)

        if second.fatal:
            logger.error(
                "Judge output still violates fatal checks after repair: %s",
                ", ".join(sorted({i.check for i in second.fatal})),
            )
            outcome = self._outcome(
                status="hard_fail",
                issues=second.failed,
                report=second,
                checks_run=checks_run,
                checks_failed=checks_failed,
                repairs=(1, 0),
                started=started,
                extra_internal=first.internal_warnings,
            )
            return VerificationRun(repaired, second.analysis, outcome)

        leftover = tuple(f"{i.check}: {i.message}" for i in second.failed)
        outcome = self._outcome(
            status="repaired",
            issues=first.failed,
            report=second,
            checks_run=checks_run,
            checks_failed=checks_failed,
            repairs=(1, 1),
            started=started,
            extra_quality=leftover,
            extra_internal=first.internal_warnings,
        )
        return VerificationRun(repaired, second.analysis, outcome)

    # ---- Internal methods ----

    def _repair_unavailable(
        self,
        synthesis: JudgeSynthesis,
        report: CheckReport,
        started: float,
        reason: str,
    ) -> VerificationRun:
        logger.error("Verifier repair round unavailable: %s", reason)
        issues = report.failed + (VerificationIssue("repair_round", reason, FATAL),)
        outcome = self._outcome(
            status="hard_fail",
            issues=issues,
            report=report,
            checks_run=report.checks_run,
            checks_failed=_failed_check_count(report),
            repairs=(1, 0),
            started=started,
            extra_internal=(reason,),
        )
        return VerificationRun(synthesis, report.analysis, outcome)

    @staticmethod
    def _outcome(
        status: str,
        issues: Tuple[VerificationIssue, ...],
        report: CheckReport,
        checks_run: int,
        checks_failed: int,
        repairs: Tuple[int, int],
        started: float,
        extra_quality: Tuple[str, ...] = (),
        extra_internal: Tuple[str, ...] = (),
    ) -> VerifierOutcome:
        attempted, succeeded = repairs
        log = VerificationLogEntry(
            checks_run=checks_run,
            checks_passed=checks_run - checks_failed,
            checks_failed=checks_failed,
            repairs_attempted=attempted,
            repairs_succeeded=succeeded,
            fatal_failure=status == "hard_fail",
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return VerifierOutcome(
            status=status,
            issues=tuple(issues),
            repaired=status == "repaired",
            repairs_used=attempted,
            checks_run=checks_run,
            checks_failed=checks_failed,
            quality_warnings=report.soft_warnings + extra_quality,
            internal_warnings=tuple(dict.fromkeys(extra_internal + report.internal_warnings)),
            log=log,
        )


def _failed_check_count(report: CheckReport) -> int:
    """Number of non-soft checks with at least one failure."""
    return len({issue.check for issue in report.failed})
