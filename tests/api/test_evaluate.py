# tests/api/test_evaluate.py
# =============================================================================
# EvaluationService / evaluate_idea / make_llm_caller 测试
# / Tests for the public evaluation API
# =============================================================================

import json

import pytest

from quorum.api import evaluate as evaluate_module
from quorum.api.evaluate import EvaluationService, evaluate_idea, make_llm_caller
from quorum.engine.cache import EvaluationCache
from quorum.errors import SchemaViolationError
from quorum.llm.router import ModelRouter
from quorum.primitives.models import CommitteeSettings, IdeaSubmission


# ---------------------------------------------------------------------------
# Shared mock helpers
# ---------------------------------------------------------------------------

class _CountingBackend:
    def __init__(self, response):
        self.response = response
        self.calls = 0

    async def call(self, system_prompt, user_message):
        self.calls += 1
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _narrative():
    return (
        "## EVIDENCE\n- Finance teams reconcile by hand [SUBMISSION]\n"
        "## MARKET OPPORTUNITY\n- Evidence: Manual work [SUBMISSION]\n- Sub-score: 7/10\n"
        "## TECHNICAL FEASIBILITY\n- Evidence: Bank APIs exist [SUBMISSION]\n- Sub-score: 6/10\n"
        "## COMPETITIVE MOAT\n- Evidence: Crowded [SUBMISSION]\n- Sub-score: 5/10\n"
        "## EXECUTION READINESS\n- Evidence: Two engineers [SUBMISSION]\n- Sub-score: 6/10\n"
        "## OVERALL\n"
        "- Composition: (0.30 × market) + (0.25 × technical) + (0.25 × moat) + (0.20 × execution)\n"
        "- Final score: 6.1/10\n- Confidence: MEDIUM\n- Top risk to thesis: Bundling\n"
    )


def _responses():
    theme = {"score": 60, "strengths": ["s"], "risks": ["r"], "notes": ""}
    return {
        "bear": json.dumps({"bearAnalysis": {
            "fatalFlaws": ["Bundled by ERPs"], "riskScore": 60,
            "verdict": "AVOID", "roast": "A feature.",
        }}),
        "bull": json.dumps({"bullAnalysis": {
            "alphaSignals": ["Painful workflow"], "upsideScore": 65,
            "verdict": "LONG", "pitch": "Boring and profitable.",
        }}),
        "judge": json.dumps({
            "overallScore": 61,
            "summary": {"title": "Recon", "oneLiner": "Ledger matching", "mainVerdict": "Pilot it"},
            "technical": theme, "tokenomics": theme, "market": theme, "execution": theme,
            "recommendations": ["Land three paid pilots"],
            "structuredAnalysis": _narrative(),
        }),
        "verifier": "{}",
    }


SUBMISSION = {
    "description": (
        "Reconciliation software for mid-market finance teams that matches bank "
        "feeds against ERP ledgers and flags exceptions for review."
    ),
    "projectType": "saas",
}

REFLECTION = {
    "question": "Will the pilot convert to a paid contract by March?",
    "predictedOutcome": "yes",
    "actualOutcome": "no",
    "predictedProbability": 70,
    "insightId": "insight-1",
}

LLM_CONFIG = {"_default": {"api_key": "sk-test"}}


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def backends():
    return {role: _CountingBackend(body) for role, body in _responses().items()}


@pytest.fixture
def router(backends, monkeypatch):
    router = ModelRouter(llm_config=LLM_CONFIG)
    monkeypatch.setattr(router, "get_model_backend", lambda role: backends[role])
    return router


@pytest.fixture
def service(router):
    return EvaluationService(router=router)


class TestMakeLlmCaller:
    @pytest.mark.asyncio
    async def test_records_ledger(self, router):
        caller = make_llm_caller(router, "bear")
        content = await caller(system_prompt="s", user_prompt="u")

        assert json.loads(content)["bearAnalysis"]["verdict"] == "AVOID"
        assert router.ledger.total_attempts == 1
        assert router.ledger.calls_by_role == {"bear": 1}

    @pytest.mark.asyncio
    async def test_failed_call_counts_attempt_only(self, router, backends):
        backends["bull"].response = RuntimeError("boom")
        caller = make_llm_caller(router, "bull")

        with pytest.raises(RuntimeError):
            await caller(system_prompt="s", user_prompt="u")
        assert router.ledger.attempts_by_role == {"bull": 1}
        assert router.ledger.total_calls == 0

    @pytest.mark.asyncio
    async def test_missing_fallback_raises(self, router, monkeypatch):
        monkeypatch.setattr(router, "get_fallback_backend", lambda role: None)
        caller = make_llm_caller(router, "judge_fallback", fallback=True)

        with pytest.raises(RuntimeError, match="No fallback model"):
            await caller(system_prompt="s", user_prompt="u")

    @pytest.mark.asyncio
    async def test_fallback_label(self, router, backends, monkeypatch):
        monkeypatch.setattr(router, "get_fallback_backend", lambda role: backends["bear"])
        caller = make_llm_caller(router, "bear", fallback=True)
        await caller(system_prompt="s", user_prompt="u")

        assert router.ledger.calls_by_role == {"bear:fallback": 1}
        assert router.ledger.fallback_calls == 1


class TestServiceConstruction:
    def test_settings_from_router_config(self, backends, monkeypatch):
        router = ModelRouter(llm_config={
            **LLM_CONFIG, "_committee": {"cache_ttl": 30, "disagreement_sigma_threshold": 1.5},
        })
        service = EvaluationService(router=router)
        assert service.settings.cache_ttl == 30.0
        assert service.settings.disagreement_sigma_threshold == 1.5

    def test_explicit_settings_win(self, router):
        settings = CommitteeSettings(role_timeout=5.0)
        service = EvaluationService(router=router, settings=settings)
        assert service.settings is settings

    def test_fresh_orchestrator_per_call(self, service):
        orchestrator = service.build_orchestrator()
        assert orchestrator is not service.build_orchestrator()


class TestEvaluateCaching:
    @pytest.mark.asyncio
    async def test_same_input_is_idempotent(self, service, backends):
        first = await service.evaluate(SUBMISSION)
        second = await service.evaluate(dict(SUBMISSION))

        assert first is second
        assert backends["judge"].calls == 1
        assert service.cache.stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_cached_result_cannot_be_mutated(self, service):
        first = await service.evaluate(SUBMISSION)
        with pytest.raises(TypeError):
            first.meta.model_route["judge"] = "other-model"
        with pytest.raises(TypeError):
            first.meta.weighted_score.components["bear"] = 0.0

        second = await service.evaluate(SUBMISSION)
        assert second.meta.model_route["judge"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_submission_object_shares_cache_with_dict(self, service, backends):
        await service.evaluate(SUBMISSION)
        await service.evaluate(IdeaSubmission.from_dict(SUBMISSION))
        assert backends["bear"].calls == 1

    @pytest.mark.asyncio
    async def test_tag_separates_entries(self, service, backends):
        await service.evaluate(SUBMISSION, tag="a")
        await service.evaluate(SUBMISSION, tag="b")
        assert backends["judge"].calls == 2

    @pytest.mark.asyncio
    async def test_use_cache_false(self, service, backends):
        await service.evaluate(SUBMISSION, use_cache=False)
        await service.evaluate(SUBMISSION, use_cache=False)
        assert backends["judge"].calls == 2
        assert service.cache.stats()["misses"] == 0

    @pytest.mark.asyncio
    async def test_custom_cache(self, router, backends):
        cache = EvaluationCache(ttl=60, max_entries=2)
        service = EvaluationService(router=router, cache=cache)
        await service.evaluate(SUBMISSION)
        assert service.cache is cache
        assert cache.stats()["size"] == 1

    @pytest.mark.asyncio
    async def test_progress_callback(self, service):
        events = []
        await service.evaluate(SUBMISSION, on_progress=events.append, use_cache=False)
        assert events[-1].type == "stage_end"
        assert events[-1].stage == "ASSEMBLE"


class TestReflect:
    @pytest.mark.asyncio
    async def test_reflect_caches_by_insight(self, service, backends):
        backends["judge"].response = json.dumps({
            "summary": "Overconfident on procurement speed.",
            "lessons": ["Price in procurement cycles"],
            "blindSpots": ["Security review"],
        })
        first = await service.reflect(REFLECTION)
        second = await service.reflect(dict(REFLECTION))
        third = await service.reflect(dict(REFLECTION, insightId="insight-2"))

        assert first is second
        assert third is not first
        assert backends["judge"].calls == 2
        assert first.outcome_matched is False
        assert first.brier_score == pytest.approx(0.49)
        assert first.blind_spots == ("Security review",)

    @pytest.mark.asyncio
    async def test_reflect_unusable_output(self, service, backends):
        backends["judge"].response = "no json"
        with pytest.raises(SchemaViolationError):
            await service.reflect(REFLECTION)


class TestEvaluateIdea:
    @pytest.mark.asyncio
    async def test_one_shot(self, backends, monkeypatch):
        monkeypatch.setattr(
            evaluate_module.ModelRouter, "get_model_backend",
            lambda self, role: backends[role],
        )
        result = await evaluate_idea(SUBMISSION, llm_config=LLM_CONFIG)

        assert result.meta.verifier_status == "pass"
        assert result.overall_score == 56.0
        assert backends["bear"].calls == 1
