# tests/agents/test_analyst.py
"""Tests for RoleAnalyst and the bear / bull output contracts."""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from quorum.agents.analyst import (
    RoleAnalyst,
    call_with_fallback,
    parse_role_output,
    parse_role_scores,
)
from quorum.errors import RoleFailureError, SchemaViolationError
from quorum.primitives.models import CommitteeRole


def _bear(**overrides):
    body = {
        "fatalFlaws": ["No moat"],
        "riskScore": 72,
        "verdict": "kill",
        "roast": "Dead on arrival.",
    }
    body.update(overrides)
    return json.dumps({"bearAnalysis": body})


def _bull(**overrides):
    body = {
        "alphaSignals": ["Strong pull"],
        "upsideScore": "80/100",
        "verdict": "ALL IN",
        "pitch": "Category winner.",
    }
    body.update(overrides)
    return json.dumps({"bullAnalysis": body, "roleScores": {"marketOpportunity": "8"}})


@pytest.fixture
def mock_llm_caller():
    return AsyncMock()


@pytest.fixture
def fallback_caller():
    return AsyncMock()


class TestParseRoleOutput:
    def test_bear_contract(self):
        analysis = parse_role_output(CommitteeRole.BEAR, _bear())
        assert analysis.verdict == "KILL"
        assert analysis.score == 72
        assert analysis.normalized_score == 28
        assert analysis.commentary == "Dead on arrival."
        assert analysis.points == ("No moat",)

    def test_bull_contract_with_string_numbers(self):
        analysis = parse_role_output(CommitteeRole.BULL, _bull())
        assert analysis.score == 80
        assert analysis.normalized_score == 80
        assert analysis.dimension_scores == {"marketOpportunity": 8.0}

    def test_fenced_json(self):
        raw = "Here is my analysis:\n```json\n" + _bear() + "\n```"
        assert parse_role_output(CommitteeRole.BEAR, raw).verdict == "KILL"

    @pytest.mark.parametrize("overrides", [
        {"riskScore": 140},
        {"riskScore": "high"},
        {"verdict": "ALL IN"},
        {"fatalFlaws": []},
        {"roast": "  "},
        {"structuredCase": 5},
    ])
    def test_bear_violations(self, overrides):
        with pytest.raises(SchemaViolationError):
            parse_role_output(CommitteeRole.BEAR, _bear(**overrides))

    def test_wrong_root(self):
        with pytest.raises(SchemaViolationError):
            parse_role_output(CommitteeRole.BULL, _bear())

    def test_not_json(self):
        with pytest.raises(ValueError):
            parse_role_output(CommitteeRole.BEAR, "I refuse.")


class TestParseRoleScores:
    def test_optional(self):
        assert parse_role_scores({}) == {}

    def test_out_of_range(self):
        with pytest.raises(SchemaViolationError):
            parse_role_scores({"roleScores": {"failureModes": 11}})

    def test_not_an_object(self):
        with pytest.raises(SchemaViolationError):
            parse_role_scores({"roleScores": [1, 2]})


class TestCallWithFallback:
    @pytest.mark.asyncio
    async def test_primary_success(self, mock_llm_caller, fallback_caller):
        mock_llm_caller.return_value = "ok"
        value, used = await call_with_fallback(
            "bear", "sys", "user", str.upper, mock_llm_caller, fallback_caller, 1.0
        )
        assert (value, used) == ("OK", False)
        fallback_caller.assert_not_called()

    @pytest.mark.asyncio
    async def test_fallback_gets_error_context(self, mock_llm_caller, fallback_caller):
        mock_llm_caller.side_effect = ConnectionError("reset")
        fallback_caller.return_value = "ok"
        hook = AsyncMock()

        value, used = await call_with_fallback(
            "bull", "sys", "user", str.upper, mock_llm_caller, fallback_caller, 1.0,
            on_retry=hook,
        )

        assert (value, used) == ("OK", True)
        prompt = fallback_caller.call_args.kwargs["user_prompt"]
        assert "ConnectionError: reset" in prompt
        assert prompt.endswith("user")
        hook.assert_awaited_once()
        assert hook.call_args.args[0] == "bull"

    @pytest.mark.asyncio
    async def test_raises_role_failure(self, mock_llm_caller, fallback_caller):
        mock_llm_caller.side_effect = ConnectionError("reset")
        fallback_caller.side_effect = ConnectionError("reset again")

        with pytest.raises(RoleFailureError) as exc_info:
            await call_with_fallback(
                "judge", "sys", "user", str.upper, mock_llm_caller, fallback_caller, 1.0
            )
        assert exc_info.value.role == "judge"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_hook_errors_are_ignored(self, mock_llm_caller, fallback_caller):
        mock_llm_caller.side_effect = ConnectionError("reset")
        fallback_caller.return_value = "ok"

        def hook(role, error):
            raise RuntimeError("listener down")

        value, used = await call_with_fallback(
            "bear", "sys", "user", str.upper, mock_llm_caller, fallback_caller, 1.0,
            on_retry=hook,
        )
        assert used is True

    @pytest.mark.asyncio
    async def test_primary_timeout(self, fallback_caller):
        async def hang(**kwargs):
            await asyncio.sleep(1)

        fallback_caller.return_value = "ok"
        value, used = await call_with_fallback(
            "bear", "sys", "user", str.upper, hang, fallback_caller, 0.02
        )
        assert used is True
        assert "timed out after 0.02s" in fallback_caller.call_args.kwargs["user_prompt"]


class TestRoleAnalyst:
    @pytest.mark.asyncio
    async def test_analyze_sets_model(self, mock_llm_caller):
        mock_llm_caller.return_value = _bear()
        analyst = RoleAnalyst(CommitteeRole.BEAR, mock_llm_caller, model="gpt-4o")

        analysis = await analyst.analyze("prompt")

        assert analysis.model == "gpt-4o"
        assert analysis.used_fallback is False
        kwargs = mock_llm_caller.call_args.kwargs
        assert '"The Bear"' in kwargs["system_prompt"]
        assert kwargs["user_prompt"] == "prompt"

    @pytest.mark.asyncio
    async def test_fallback_model_recorded(self, mock_llm_caller, fallback_caller):
        mock_llm_caller.return_value = _bull(verdict="MOON")
        fallback_caller.return_value = _bull()
        analyst = RoleAnalyst(
            CommitteeRole.BULL, mock_llm_caller, fallback_caller,
            model="primary", fallback_model="backup",
        )

        analysis = await analyst.analyze("prompt")

        assert analysis.model == "backup"
        assert analysis.used_fallback is True

    def test_judge_is_not_an_analyst(self, mock_llm_caller):
        with pytest.raises(ValueError):
            RoleAnalyst(CommitteeRole.JUDGE, mock_llm_caller)
