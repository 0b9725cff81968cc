"""委员会主审 Agent。 / Judge agent: reconciles the bear and bull reports.

JudgeAgent 负责两件事：
1. synthesize: 基于提交内容与 Bear / Bull 原文输出最终决策；
2. repair: verifier 发现问题时，携带违规清单做恰好一轮修复。
/ synthesize produces the committee decision; repair runs the single
verifier-driven repair round with the list of violated checks.
"""

import json
import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Sequence, Tuple

from quorum.agents.analyst import LLMCaller, RetryHook, call_with_fallback
from quorum.errors import SchemaViolationError
from quorum.primitives.models import (
    THEMES,
    IdeaSummary,
    JudgeSynthesis,
    ThemeBreakdown,
    VerificationIssue,
)
from quorum.prompts import JUDGE_REPAIR_PROMPT, JUDGE_SYSTEM_PROMPT
from quorum.utils.json_parser import coerce_number, parse_json_from_llm

logger = logging.getLogger(__name__)

# 主题分的扁平别名 / flat score aliases some models emit instead of theme objects
THEME_SCORE_ALIASES = {
    "technical": "feasibilityScore",
    "tokenomics": "designScore",
    "market": "marketFitScore",
    "execution": "readinessScore",
}


def _string_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return ()
    return tuple(str(item).strip() for item in value if str(item).strip())


def _parse_theme(data: Dict[str, Any], name: str) -> ThemeBreakdown:
    theme = data.get(name)
    if not isinstance(theme, dict):
        theme = {}
    score = coerce_number(theme.get("score"))
    if score is None:
        score = coerce_number(data.get(THEME_SCORE_ALIASES[name]))
    notes = theme.get("notes") or ""
    return ThemeBreakdown(
        score=score,
        strengths=_string_list(theme.get("strengths")),
        risks=_string_list(theme.get("risks")),
        notes=notes.strip() if isinstance(notes, str) else str(notes),
    )


def _parse_recommendations(value: Any) -> Tuple[str, ...]:
    # 允许按类别分组的对象，展开为列表 / grouped dict form is flattened
    if isinstance(value, dict):
        items = []
        for group in value.values():
            items.extend(_string_list(group))
        return tuple(items)
    return _string_list(value)


def parse_judge_output(raw: str) -> JudgeSynthesis:
    """解析 Judge 输出。 / Parse judge JSON into a JudgeSynthesis.

    Numeric ranges are not enforced here so the verifier can report them;
    only the fields nothing downstream can work without are required.

    Raises:
        ValueError: no JSON object in the output.
        SchemaViolationError: overallScore or summary is missing.
    """
    data = parse_json_from_llm(raw)

    overall = coerce_number(data.get("overallScore"))
    if overall is None:
        raise SchemaViolationError(
            f"overallScore must be a number, got {data.get('overallScore')!r}"
        )

    summary = data.get("summary")
    if not isinstance(summary, dict):
        raise SchemaViolationError("summary object is missing")

    structured = data.get("structuredAnalysis") or ""
    if not isinstance(structured, str):
        raise SchemaViolationError("structuredAnalysis must be a string")

    themes = {name: _parse_theme(data, name) for name in THEMES}
    return JudgeSynthesis(
        overall_score=overall,
        summary=IdeaSummary(
            title=str(summary.get("title") or "").strip(),
            one_liner=str(summary.get("oneLiner") or "").strip(),
            main_verdict=str(summary.get("mainVerdict") or "").strip(),
        ),
        recommendations=_parse_recommendations(data.get("recommendations")),
        structured_analysis=structured.strip(),
        **themes,
    )


def synthesis_to_payload(synthesis: JudgeSynthesis) -> Dict[str, Any]:
    """JudgeSynthesis -> 模型使用的 camelCase JSON。 / Back to the model's JSON shape."""
    payload: Dict[str, Any] = {
        "overallScore": synthesis.overall_score,
        "summary": {
            "title": synthesis.summary.title,
            "oneLiner": synthesis.summary.one_liner,
            "mainVerdict": synthesis.summary.main_verdict,
        },
    }
    for name, theme in synthesis.themes().items():
        payload[name] = theme.to_dict()
    payload["recommendations"] = list(synthesis.recommendations)
    payload["structuredAnalysis"] = synthesis.structured_analysis
    return payload


class JudgeAgent:
    """委员会主审。 / Managing-partner judge of the committee."""

    def __init__(
        self,
        llm_caller: LLMCaller,
        fallback_caller: Optional[LLMCaller] = None,
        repair_caller: Optional[LLMCaller] = None,
        timeout: float = 60.0,
        model: str = "",
        fallback_model: str = "",
        repair_model: str = "",
        system_prompt: str = JUDGE_SYSTEM_PROMPT,
    ):
        self._llm_caller = llm_caller
        self._fallback_caller = fallback_caller
        self._repair_caller = repair_caller or llm_caller
        self._timeout = timeout
        self._model = model
        self._fallback_model = fallback_model
        self._repair_model = repair_model or model
        self._system_prompt = system_prompt

    async def synthesize(
        self,
        user_prompt: str,
        on_retry: Optional[RetryHook] = None,
    ) -> JudgeSynthesis:
        """调和 Bear / Bull 报告。 / Reconcile the two role reports."""
        synthesis, used_fallback = await call_with_fallback(
            role="judge",
            system_prompt=self._system_prompt,
            user_prompt=user_prompt,
            parse=parse_judge_output,
            primary=self._llm_caller,
            fallback=self._fallback_caller,
            timeout=self._timeout,
            on_retry=on_retry,
        )
        model = self._fallback_model if used_fallback else self._model
        logger.info(
            f"Judge overallScore={synthesis.overall_score} fallback={used_fallback}"
        )
        return replace(synthesis, model=model, used_fallback=used_fallback)

    async def repair(
        self,
        synthesis: JudgeSynthesis,
        issues: Sequence[VerificationIssue],
    ) -> JudgeSynthesis:
        """单轮修复；异常与超时由 verifier 处理。

        / One repair call; timeouts and errors are handled by the verifier.
        """
        fixes = "\n".join(
            f"- [{issue.check}] {issue.message}" for issue in issues
        )
        prompt = JUDGE_REPAIR_PROMPT.format(
            required_fixes=fixes or "- (none listed)",
            previous_output=json.dumps(
                synthesis_to_payload(synthesis), ensure_ascii=False, indent=2
            ),
        )
        logger.info(f"Judge repair round for {len(issues)} issue(s)")
        raw = await self._repair_caller(
            system_prompt=self._system_prompt,
            user_prompt=prompt,
        )
        repaired = parse_judge_output(raw)
        return replace(
            repaired, model=self._repair_model, used_fallback=synthesis.used_fallback
        )

