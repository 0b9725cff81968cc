# committee.py
# =============================================================================
# 委员会评估编排器 / Committee evaluation orchestrator
#
# 阶段 / Stages:
#   CLASSIFY  领域分类 / domain classification
#   ROLES     Bear / Bull 并发分析 / bear and bull run concurrently
#   JUDGE     主审调和两份报告 / judge reconciles both reports
#   VERIFY    质量门 + 单轮修复 / quality gate with one repair round
#   ASSEMBLE  校准、分歧、加权、置信度、meta / calibration, disagreement,
#             weighting, confidence, meta
#
# 任一角色主模型 + 备用模型都失败则整次评估失败，从不返回部分结果。
# / If a role fails on both primary and fallback the whole evaluation fails;
# partial results are never returned.
# =============================================================================

"""Committee orchestration: bear and bull in parallel, then the judge."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from quorum.agents.analyst import RoleAnalyst
from quorum.agents.judge import JudgeAgent
from quorum.domain.classifier import classify_domain, normalize_project_type
from quorum.domain.roles import build_role_specialization_block
from quorum.domain.rubric import build_scoring_rubric
from quorum.engine.calibration import (
    calibrate_score,
    compute_debate_disagreement_index,
    compute_weighted_score,
    derive_confidence,
    signals_for,
)
from quorum.engine.disagreement import compute_committee_disagreement
from quorum.engine.grounding import format_grounding_brief
from quorum.engine.structured import dimension_scores
from quorum.engine.verifier import QualityVerifier
from quorum.errors import EvaluationRejected, EvaluationTimeoutError
from quorum.primitives.events import EvaluationEvent
from quorum.primitives.models import (
    CommitteeMeta,
    CommitteeResult,
    CommitteeRole,
    CommitteeSettings,
    GroundingSnapshot,
    IdeaSubmission,
    JudgeSynthesis,
    RoleAnalysis,
)
from quorum.prompts import JUDGE_USER_PROMPT, ROLE_USER_PROMPT, SUBMISSION_CONTEXT

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[EvaluationEvent], Union[None, Awaitable[None]]]

# 缺失字段的保守默认 / conservative defaults for missing submission fields
_MISSING_MVP = "Not provided - assume vague/undefined"
_MISSING_GTM = "Not provided - assume no distribution plan"
_MISSING_LAUNCH = "Not provided - assume high rug risk / no liquidity plan"


def build_submission_context(submission: IdeaSubmission) -> str:
    """提交内容摘要，包装在 <submission_data> 中。 / Context summary for every role."""
    return SUBMISSION_CONTEXT.format(
        description=submission.description,
        project_type=normalize_project_type(submission.project_type),
        team_size=submission.team_size or "unspecified",
        resources=", ".join(submission.resources) or "none listed",
        success_definition=submission.success_definition or "unspecified",
        mvp_scope=submission.mvp_scope or _MISSING_MVP,
        go_to_market=submission.go_to_market or _MISSING_GTM,
        launch_liquidity_plan=submission.launch_liquidity_plan or _MISSING_LAUNCH,
        response_style=submission.response_style,
        focus_hints=", ".join(submission.focus_hints) or "none",
    )


class CommitteeOrchestrator:
    """三角色委员会编排器。 / Three-role committee orchestrator."""

    # 各阶段在总进度中的权重 / Stage weights in total progress (sum = 1.0)
    _STAGE_WEIGHTS = {
        "CLASSIFY": 0.05,
        "ROLES": 0.45,
        "JUDGE": 0.30,
        "VERIFY": 0.15,
        "ASSEMBLE": 0.05,
    }

    def __init__(
        self,
        bear: RoleAnalyst,
        bull: RoleAnalyst,
        judge: JudgeAgent,
        settings: Optional[CommitteeSettings] = None,
        verifier: Optional[QualityVerifier] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self._bear = bear
        self._bull = bull
        self._judge = judge
        self._settings = settings or CommitteeSettings()
        self._verifier = verifier or QualityVerifier(self._settings)
        self._on_progress = on_progress

        self._stage_offsets: Dict[str, float] = {}
        offset = 0.0
        for stage, weight in self._STAGE_WEIGHTS.items():
            self._stage_offsets[stage] = offset
            offset += weight

    async def evaluate(
        self,
        submission: IdeaSubmission,
        grounding: Optional[GroundingSnapshot] = None,
        run_id: Optional[str] = None,
    ) -> CommitteeResult:
        """执行一次完整评估。 / Run one full committee evaluation.

        Raises:
            EvaluationRejected: the judge output failed the quality gate.
            RoleFailureError: a role failed on both primary and fallback.
            EvaluationTimeoutError: the run exceeded evaluation_timeout.
        """
        run_id = run_id or str(uuid.uuid4())[:8]
        timeout = self._settings.evaluation_timeout
        try:
            return await asyncio.wait_for(
                self._run(submission, grounding, run_id), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            logger.error(f"[{run_id}] Evaluation exceeded {timeout}s")
            await self._emit(EvaluationEvent(
                type="error", stage="ASSEMBLE", run_id=run_id,
                detail={"reason": "timeout", "timeout": timeout},
            ))
            raise EvaluationTimeoutError(
                f"Evaluation exceeded its {timeout}s budget"
            ) from e

    # ---- Stages ----

    async def _run(
        self,
        submission: IdeaSubmission,
        grounding: Optional[GroundingSnapshot],
        run_id: str,
    ) -> CommitteeResult:
        logger.info(f"[{run_id}] Committee evaluation started")

        # CLASSIFY
        await self._stage_start("CLASSIFY", run_id)
        classification = classify_domain(
            submission.project_type, submission.description, submission.domain_override
        )
        domain = classification.domain
        logger.info(
            f"[{run_id}] Domain {domain.value} "
            f"(confidence={classification.confidence}, override={classification.from_override})"
        )
        await self._stage_end("CLASSIFY", run_id, {"domain": domain.value})

        context = build_submission_context(submission)
        brief = format_grounding_brief(grounding, self._settings.grounding_token_budget)
        rubric = build_scoring_rubric(domain)

        def role_prompt(role: CommitteeRole) -> str:
            return ROLE_USER_PROMPT.format(
                specialization=build_role_specialization_block(
                    role, domain, submission.project_type
                ),
                submission=context,
                grounding=brief,
                rubric=rubric,
            )

        # ROLES
        await self._stage_start("ROLES", run_id)
        on_retry = self._retry_hook("ROLES", run_id)
        bear, bull = await self._gather_roles(
            self._bear.analyze(role_prompt(CommitteeRole.BEAR), on_retry=on_retry),
            self._bull.analyze(role_prompt(CommitteeRole.BULL), on_retry=on_retry),
        )
        await self._stage_end("ROLES", run_id, {
            "bear": {"verdict": bear.verdict, "risk_score": bear.score},
            "bull": {"verdict": bull.verdict, "upside_score": bull.score},
        })

        # JUDGE
        await self._stage_start("JUDGE", run_id)
        judge_prompt = JUDGE_USER_PROMPT.format(
            specialization=build_role_specialization_block(
                CommitteeRole.JUDGE, domain, submission.project_type
            ),
            submission=context,
            grounding=brief,
            rubric=rubric,
            bear_report=_report_json(bear),
            bull_report=_report_json(bull),
        )
        synthesis = await self._judge.synthesize(
            judge_prompt, on_retry=self._retry_hook("JUDGE", run_id)
        )
        await self._stage_end("JUDGE", run_id, {"overall_score": synthesis.overall_score})

        # VERIFY
        await self._stage_start("VERIFY", run_id)
        available_tags = grounding.available_tags() if grounding else ()

        async def repair(current: JudgeSynthesis, issues) -> JudgeSynthesis:
            await self._emit(EvaluationEvent(
                type="repair", stage="VERIFY", run_id=run_id, role="judge",
                progress=self._progress("VERIFY", 0.5),
                detail={"checks": sorted({issue.check for issue in issues})},
            ))
            return await self._judge.repair(current, issues)

        verification = await self._verifier.verify(synthesis, repair, available_tags)
        outcome = verification.outcome
        if outcome.status == "hard_fail":
            logger.error(
                f"[{run_id}] Evaluation rejected by quality checks: "
                f"{', '.join(sorted({i.check for i in outcome.issues}))}"
            )
            await self._emit(EvaluationEvent(
                type="error", stage="VERIFY", run_id=run_id,
                progress=self._progress("VERIFY", 1.0),
                detail={"reason": "quality_checks", "issues": [i.to_dict() for i in outcome.issues]},
            ))
            raise EvaluationRejected(outcome.issues, outcome)
        synthesis = verification.synthesis
        await self._stage_end("VERIFY", run_id, {"status": outcome.status})

        # ASSEMBLE
        await self._stage_start("ASSEMBLE", run_id)
        analysis = verification.analysis
        signals = signals_for(submission, domain, analysis, available_tags)
        calibration = calibrate_score(synthesis.overall_score, signals, self._settings)

        disagreement = compute_committee_disagreement(
            bear_risk=bear.score,
            bull_upside=bull.score,
            judge_score=synthesis.overall_score,
            dimension_scores={
                "bear": bear.dimension_scores,
                "bull": bull.dimension_scores,
                "judge": dimension_scores(analysis),
            },
            sigma_threshold=self._settings.disagreement_sigma_threshold,
        )
        weighted = compute_weighted_score(bear, bull, calibration.score)
        fallback_used = bear.used_fallback or bull.used_fallback or synthesis.used_fallback
        level, confidence = derive_confidence(
            evidence_coverage=signals.evidence_coverage,
            verifier_status=outcome.status,
            fallback_used=fallback_used,
            has_grounding=bool(available_tags),
            high_disagreement=disagreement.high_disagreement_flag,
        )

        meta = CommitteeMeta(
            confidence_level=level,
            confidence_score=confidence,
            evidence_coverage=signals.evidence_coverage,
            verifier_status=outcome.status,
            weighted_score=weighted,
            committee_disagreement=disagreement,
            domain=classification,
            raw_judge_score=synthesis.overall_score,
            calibration_notes=calibration.notes,
            debate_disagreement_index=compute_debate_disagreement_index(bear, bull),
            model_route={
                "bear": bear.model,
                "bull": bull.model,
                "judge": synthesis.model,
            },
            fallback_used=fallback_used,
            quality_warnings=outcome.quality_warnings,
            verifier=outcome,
        )
        result = CommitteeResult(
            overall_score=calibration.score,
            summary=synthesis.summary,
            technical=synthesis.technical,
            tokenomics=synthesis.tokenomics,
            market=synthesis.market,
            execution=synthesis.execution,
            recommendations=synthesis.recommendations,
            structured_analysis=synthesis.structured_analysis,
            bear=bear,
            bull=bull,
            meta=meta,
        )
        await self._stage_end("ASSEMBLE", run_id, {
            "overall_score": result.overall_score,
            "confidence_level": level,
        })
        logger.info(
            f"[{run_id}] Committee evaluation done: score={result.overall_score} "
            f"raw={synthesis.overall_score} confidence={level} verifier={outcome.status}"
        )
        return result

    # ---- Internal methods ----

    @staticmethod
    async def _gather_roles(bear_call, bull_call):
        """并发执行两个角色；任一失败即取消另一个。 / Run both; cancel the sibling on failure."""
        tasks = [asyncio.ensure_future(bear_call), asyncio.ensure_future(bull_call)]
        try:
            bear, bull = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return bear, bull

    def _retry_hook(self, stage: str, run_id: str):
        async def on_retry(role: str, error: BaseException) -> None:
            await self._emit(EvaluationEvent(
                type="role_retry", stage=stage, run_id=run_id, role=role,
                progress=self._progress(stage, 0.5),
                detail={"error": f"{type(error).__name__}: {error}"[:300]},
            ))
        return on_retry

    async def _stage_start(self, stage: str, run_id: str) -> None:
        await self._emit(EvaluationEvent(
            type="stage_start", stage=stage, run_id=run_id,
            progress=self._progress(stage, 0.0),
        ))

    async def _stage_end(self, stage: str, run_id: str, detail: Optional[Dict[str, Any]] = None) -> None:
        await self._emit(EvaluationEvent(
            type="stage_end", stage=stage, run_id=run_id,
            progress=self._progress(stage, 1.0), detail=detail,
        ))

    async def _emit(self, event: EvaluationEvent) -> None:
        """触发进度回调（支持同步和异步回调）；回调异常只记录。

        / Emit to the progress callback (sync or async); callback errors are logged.
        """
        if self._on_progress is None:
            return
        try:
            result = self._on_progress(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[{event.run_id}] Progress callback failed on {event.type}: {e}")

    def _progress(self, stage: str, fraction: float = 0.0) -> float:
        base = self._stage_offsets.get(stage, 0.0)
        weight = self._STAGE_WEIGHTS.get(stage, 0.0)
        return round(min(1.0, base + weight * fraction), 4)


def _report_json(analysis: RoleAnalysis) -> str:
    score_key = "riskScore" if analysis.role is CommitteeRole.BEAR else "upsideScore"
    return json.dumps(
        {
            "role": analysis.role.value,
            "verdict": analysis.verdict,
            score_key: analysis.score,
            "commentary": analysis.commentary,
            "points": list(analysis.points),
            "roleScores": dict(analysis.dimension_scores),
            "structuredCase": analysis.structured_case,
        },
        ensure_ascii=False,
        indent=2,
    )
