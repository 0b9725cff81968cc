"""端到端集成测试：一个 meme 资产想法走完整个委员会流程。
/ E2E integration test: a meme-asset idea through the full committee.

使用脚本化的模型后端替换路由器适配器，验证
CLASSIFY -> ROLES -> JUDGE -> VERIFY -> ASSEMBLE 全流程。
/ Scripted model backends replace the router's adapters.
"""
import json

import pytest

from quorum.api.evaluate import EvaluationService
from quorum.errors import EvaluationRejected
from quorum.llm.router import ModelRouter
from quorum.primitives.models import GroundingSnapshot, IdeaSubmission, ProjectDomain
from quorum.prompts import RETRY_JSON_PREFIX


MEME_EMPHASIS_BEAR = (
    "Domain emphasis (Meme asset): rug vectors, holder concentration, distribution fragility."
)
MEME_EMPHASIS_BULL = (
    "Domain emphasis (Meme asset): narrative timing, distribution loops, community retention."
)


class _ScriptedBackend:
    """按顺序返回脚本响应的假适配器。 / Fake adapter replaying scripted responses."""

    def __init__(self, *responses):
        self._responses = list(responses)
        self.calls = []

    async def call(self, system_prompt, user_message):
        self.calls.append({"system_prompt": system_prompt, "user_message": user_message})
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def _bear():
    return json.dumps({
        "bearAnalysis": {
            "fatalFlaws": ["Top ten wallets hold most of the supply", "No reason to hold"],
            "riskScore": 70,
            "verdict": "AVOID",
            "roast": "A ticker looking for a community.",
        },
    })


def _bull():
    return json.dumps({
        "bullAnalysis": {
            "alphaSignals": ["Timely narrative", "Active raid channel"],
            "upsideScore": 55,
            "verdict": "LONG",
            "pitch": "Attention is the product.",
        },
    })


def _narrative(tag="SUBMISSION"):
    return (
        "## EVIDENCE\n"
        f"- Community of 4k holders claimed [{tag}]\n"
        "## MARKET OPPORTUNITY\n"
        f"- Evidence: Narrative demand [{tag}]\n"
        "- Sub-score: 7/10\n"
        "## TECHNICAL FEASIBILITY\n"
        f"- Evidence: Standard token contract [{tag}]\n"
        "- Sub-score: 6/10\n"
        "## COMPETITIVE MOAT\n"
        f"- Evidence: Thousands of similar tickers [{tag}]\n"
        "- Sub-score: 5/10\n"
        "## EXECUTION READINESS\n"
        f"- Evidence: Anonymous two-person team [{tag}]\n"
        "- Sub-score: 6/10\n"
        "## OVERALL\n"
        "- Composition: (0.30 × market) + (0.25 × technical) + (0.25 × moat) + (0.20 × execution)\n"
        "- Final score: 6.1/10\n"
        "- Confidence: LOW\n"
        "- Top risk to thesis: Holder concentration\n"
    )


def _judge(overall=61, narrative=None):
    theme = {"score": 55, "strengths": ["Narrative"], "risks": ["Concentration"], "notes": ""}
    return json.dumps({
        "overallScore": overall,
        "summary": {"title": "FROG", "oneLiner": "Community meme token", "mainVerdict": "Speculative"},
        "technical": theme,
        "tokenomics": theme,
        "market": theme,
        "execution": theme,
        "recommendations": ["Publish the liquidity lock", "Cap team allocation"],
        "structuredAnalysis": _narrative() if narrative is None else narrative,
    })


MEME_SUBMISSION = {
    "description": (
        "A frog-themed community token on Base with a meme-first brand, a raid "
        "channel of four thousand holders and no product roadmap beyond culture."
    ),
    "projectType": "meme-asset launch, no utility",
    "teamSize": "2",
}


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def backends():
    return {
        "bear": _ScriptedBackend(_bear()),
        "bull": _ScriptedBackend(_bull()),
        "judge": _ScriptedBackend(_judge()),
        "verifier": _ScriptedBackend(_judge()),
        "fallback": _ScriptedBackend(_bear()),
    }


@pytest.fixture
def service(backends, monkeypatch):
    router = ModelRouter(llm_config={"_default": {"api_key": "sk-test"}})
    monkeypatch.setattr(router, "get_model_backend", lambda role: backends[role])
    monkeypatch.setattr(router, "get_fallback_backend", lambda role: backends["fallback"])
    return EvaluationService(router=router)


class TestMemeAssetEvaluation:
    @pytest.mark.asyncio
    async def test_full_committee_run(self, service, backends):
        result = await service.evaluate(MEME_SUBMISSION)

        assert result.meta.domain.domain is ProjectDomain.MEME_ASSET
        assert result.meta.domain.to_dict()["domain"] == "meme-asset"
        assert result.meta.verifier_status == "pass"
        assert result.meta.raw_judge_score == 61.0
        # 无依据 -5，无发射计划 -5 / no grounding -5, no launch plan -5
        assert result.overall_score == 51.0
        assert any("launch/liquidity plan" in note for note in result.meta.calibration_notes)
        assert result.recommendations == ("Publish the liquidity lock", "Cap team allocation")
        assert result.bear.verdict == "AVOID"
        assert result.bull.score == 55
        assert result.meta.fallback_used is False
        for role in ("bear", "bull", "judge"):
            assert len(backends[role].calls) == 1
        assert backends["verifier"].calls == []

    @pytest.mark.asyncio
    async def test_launch_plan_removes_penalty(self, service):
        submission = dict(MEME_SUBMISSION, launchLiquidityPlan="Seed 20 ETH, lock LP for a year")
        result = await service.evaluate(submission)

        assert result.overall_score == 56.0
        assert not any("launch/liquidity plan" in note for note in result.meta.calibration_notes)

    @pytest.mark.asyncio
    async def test_role_prompts_carry_domain_emphasis(self, service, backends):
        await service.evaluate(MEME_SUBMISSION)

        bear_prompt = backends["bear"].calls[0]["user_message"]
        bull_prompt = backends["bull"].calls[0]["user_message"]
        assert MEME_EMPHASIS_BEAR in bear_prompt
        assert MEME_EMPHASIS_BULL in bull_prompt
        assert MEME_EMPHASIS_BEAR not in bull_prompt
        assert "<submission_data>" in bear_prompt

    @pytest.mark.asyncio
    async def test_judge_prompt_carries_structured_template(self, service, backends):
        await service.evaluate(MEME_SUBMISSION)

        system_prompt = backends["judge"].calls[0]["system_prompt"]
        assert system_prompt.count("Sub-score: X/10") == 4
        assert "- Composition: (0.30 × market)" in system_prompt
        user_prompt = backends["judge"].calls[0]["user_message"]
        assert "Top ten wallets hold most of the supply" in user_prompt
        assert "Attention is the product." in user_prompt

    @pytest.mark.asyncio
    async def test_grounded_run_cites_snapshot(self, service, backends):
        backends["judge"] = _ScriptedBackend(_judge(narrative=_narrative("MARKET_SNAPSHOT")))
        grounding = GroundingSnapshot(market_snapshot="FDV $4M, 24h volume $900k, 4,100 holders")
        result = await service.evaluate(MEME_SUBMISSION, grounding=grounding)

        assert "MARKET_SNAPSHOT" in backends["bear"].calls[0]["user_message"]
        assert result.meta.evidence_coverage > 0.0
        assert result.overall_score > 51.0


class TestFailurePaths:
    @pytest.mark.asyncio
    async def test_bear_falls_back_once(self, service, backends):
        backends["bear"] = _ScriptedBackend(RuntimeError("provider down"))
        result = await service.evaluate(MEME_SUBMISSION)

        assert result.meta.fallback_used is True
        assert len(backends["fallback"].calls) == 1
        retry_prompt = backends["fallback"].calls[0]["user_message"]
        assert retry_prompt.startswith(RETRY_JSON_PREFIX.split("{error}")[0])
        assert service.router.ledger.fallback_calls == 1

    @pytest.mark.asyncio
    async def test_out_of_range_score_is_rejected(self, service, backends):
        backends["judge"] = _ScriptedBackend(_judge(overall=140))
        backends["verifier"] = _ScriptedBackend(_judge(overall=140))

        with pytest.raises(EvaluationRejected) as exc_info:
            await service.evaluate(MEME_SUBMISSION)

        payload = exc_info.value.to_payload()
        assert payload["error"] == "evaluation_failed_quality_checks"
        assert "overall_score_range" in {issue["check"] for issue in payload["issues"]}

    @pytest.mark.asyncio
    async def test_missing_description_fails_before_any_call(self, service, backends):
        with pytest.raises(ValueError):
            await service.evaluate({"projectType": "meme"})
        assert backends["bear"].calls == []

    def test_submission_object_is_accepted(self):
        submission = IdeaSubmission.from_dict(MEME_SUBMISSION)
        assert submission.project_type == "meme-asset launch, no utility"
