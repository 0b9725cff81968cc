"""委员会角色分析员 Agent。 / Role analyst agent (Bear / Bull).

RoleAnalyst 以专业化指令块 + 提交内容调用一次模型，按角色约定
校验 JSON 输出；失败时（超时、provider 异常、解析或约定违规）
对备用模型恰好重试一次，仍失败则抛出 RoleFailureError。
/ Calls the model once with the specialization block and submission,
validates the JSON against the role contract, and retries exactly once on
the fallback model before raising RoleFailureError.
"""

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from quorum.errors import RoleFailureError, SchemaViolationError
from quorum.primitives.models import CommitteeRole, RoleAnalysis
from quorum.prompts import BEAR_SYSTEM_PROMPT, BULL_SYSTEM_PROMPT, RETRY_JSON_PREFIX
from quorum.utils.json_parser import coerce_number, parse_json_from_llm

logger = logging.getLogger(__name__)

T = TypeVar("T")

LLMCaller = Callable[..., Awaitable[str]]
RetryHook = Callable[[str, BaseException], Any]

# 角色输出约定 / Role output contracts
ROLE_CONTRACTS: Dict[CommitteeRole, Dict[str, Any]] = {
    CommitteeRole.BEAR: {
        "root": "bearAnalysis",
        "points": "fatalFlaws",
        "score": "riskScore",
        "commentary": "roast",
        "verdicts": ("KILL", "AVOID", "SHORT"),
        "system_prompt": BEAR_SYSTEM_PROMPT,
    },
    CommitteeRole.BULL: {
        "root": "bullAnalysis",
        "points": "alphaSignals",
        "score": "upsideScore",
        "commentary": "pitch",
        "verdicts": ("ALL IN", "APE", "LONG"),
        "system_prompt": BULL_SYSTEM_PROMPT,
    },
}


def _require_text(data: Dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SchemaViolationError(f"{where}.{key} must be a non-empty string")
    return value.strip()


def parse_role_scores(data: Dict[str, Any]) -> Dict[str, float]:
    """roleScores: 可选；若存在，每个值必须是 0-10 的数字。"""
    raw = data.get("roleScores")
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise SchemaViolationError("roleScores must be an object")
    scores = {}
    for dimension, value in raw.items():
        number = coerce_number(value)
        if number is None or not 0 <= number <= 10:
            raise SchemaViolationError(
                f"roleScores.{dimension} must be a number within 0-10, got {value!r}"
            )
        scores[str(dimension)] = number
    return scores


def parse_role_output(role: CommitteeRole, raw: str) -> RoleAnalysis:
    """解析并校验角色输出。 / Parse and validate a bear or bull response.

    Raises:
        ValueError: no JSON object in the output.
        SchemaViolationError: the JSON does not satisfy the role contract.
    """
    contract = ROLE_CONTRACTS[role]
    data = parse_json_from_llm(raw)

    body = data.get(contract["root"])
    if not isinstance(body, dict):
        raise SchemaViolationError(f"{contract['root']} object is missing")
    where = contract["root"]

    points = body.get(contract["points"])
    if not isinstance(points, list) or not points:
        raise SchemaViolationError(f"{where}.{contract['points']} must be a non-empty list")

    score = coerce_number(body.get(contract["score"]))
    if score is None or not 0 <= score <= 100:
        raise SchemaViolationError(
            f"{where}.{contract['score']} must be a number within 0-100, "
            f"got {body.get(contract['score'])!r}"
        )

    verdict = str(body.get("verdict") or "").strip().upper()
    if verdict not in contract["verdicts"]:
        raise SchemaViolationError(
            f"{where}.verdict must be one of {', '.join(contract['verdicts'])}, "
            f"got {body.get('verdict')!r}"
        )

    structured_case = body.get("structuredCase") or ""
    if not isinstance(structured_case, str):
        raise SchemaViolationError(f"{where}.structuredCase must be a string")

    return RoleAnalysis(
        role=role,
        verdict=verdict,
        score=score,
        commentary=_require_text(body, contract["commentary"], where),
        points=tuple(str(p).strip() for p in points if str(p).strip()),
        dimension_scores=parse_role_scores(data),
        structured_case=structured_case.strip(),
    )


async def _notify(hook: Optional[RetryHook], role: str, error: BaseException) -> None:
    if hook is None:
        return
    try:
        result = hook(role, error)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.warning(f"Retry hook raised for role {role}: {exc}")


async def call_with_fallback(
    role: str,
    system_prompt: str,
    user_prompt: str,
    parse: Callable[[str], T],
    primary: LLMCaller,
    fallback: Optional[LLMCaller],
    timeout: float,
    on_retry: Optional[RetryHook] = None,
) -> Tuple[T, bool]:
    """主模型调用一次，失败后对备用模型恰好重试一次。

    / Call the primary model once; on any failure retry exactly once on the
    fallback model.

    Returns:
        (parsed value, whether the fallback produced it)

    Raises:
        RoleFailureError: both attempts failed.
    """
    try:
        raw = await asyncio.wait_for(
            primary(system_prompt=system_prompt, user_prompt=user_prompt),
            timeout=timeout,
        )
        return parse(raw), False
    except asyncio.CancelledError:
        raise
    except Exception as e:
        first_error = e

    if isinstance(first_error, asyncio.TimeoutError):
        reason = f"timed out after {timeout}s"
    else:
        reason = f"{type(first_error).__name__}: {first_error}"
    logger.warning(f"Role {role} primary attempt failed ({reason}); retrying on fallback model")

    if fallback is None:
        raise RoleFailureError(role, first_error) from first_error
    await _notify(on_retry, role, first_error)

    retry_prompt = RETRY_JSON_PREFIX.format(error=reason[:300]) + user_prompt
    try:
        raw = await asyncio.wait_for(
            fallback(system_prompt=system_prompt, user_prompt=retry_prompt),
            timeout=timeout,
        )
        return parse(raw), True
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"Role {role} fallback attempt failed: {type(e).__name__}: {e}")
        raise RoleFailureError(role, e) from e


class RoleAnalyst:
    """委员会角色分析员。 / Committee role analyst for the bear or bull seat."""

    def __init__(
        self,
        role: CommitteeRole,
        llm_caller: LLMCaller,
        fallback_caller: Optional[LLMCaller] = None,
        timeout: float = 25.0,
        model: str = "",
        fallback_model: str = "",
        system_prompt: Optional[str] = None,
    ):
        if role not in ROLE_CONTRACTS:
            raise ValueError(f"RoleAnalyst handles bear and bull, not {role}")
        self.role = role
        self._llm_caller = llm_caller
        self._fallback_caller = fallback_caller
        self._timeout = timeout
        self._model = model
        self._fallback_model = fallback_model
        self._system_prompt = system_prompt or ROLE_CONTRACTS[role]["system_prompt"]

    async def analyze(
        self,
        user_prompt: str,
        on_retry: Optional[RetryHook] = None,
    ) -> RoleAnalysis:
        """独立分析：返回通过约定校验的 RoleAnalysis。"""
        analysis, used_fallback = await call_with_fallback(
            role=self.role.value,
            system_prompt=self._system_prompt,
            user_prompt=user_prompt,
            parse=lambda raw: parse_role_output(self.role, raw),
            primary=self._llm_caller,
            fallback=self._fallback_caller,
            timeout=self._timeout,
            on_retry=on_retry,
        )
        model = self._fallback_model if used_fallback else self._model
        logger.info(
            f"Role {self.role.value} verdict={analysis.verdict} "
            f"score={analysis.score} fallback={used_fallback}"
        )
        return replace(analysis, model=model, used_fallback=used_fallback)
