"""预测复盘 Agent。 / Reflection agent for resolved predictions.

结果是否命中与 Brier 分数在本地确定性计算；模型只负责
总结、经验教训与盲点。
/ Outcome match and Brier score are computed locally; the model only
writes the summary, lessons and blind spots.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from quorum.errors import SchemaViolationError
from quorum.primitives.models import PredictionReflection, PredictionReflectionInput
from quorum.prompts import REFLECTION_SYSTEM_PROMPT, REFLECTION_USER_PROMPT
from quorum.utils.json_parser import parse_json_from_llm

logger = logging.getLogger(__name__)


def brier_score(reflection_input: PredictionReflectionInput) -> Optional[float]:
    """(p - o)^2，p 为预测概率，o 为是否命中。无预测概率时返回 None。"""
    probability = reflection_input.predicted_probability
    if probability is None:
        return None
    outcome = 1.0 if reflection_input.outcome_matched else 0.0
    return round((probability - outcome) ** 2, 4)


def _text_list(value: Any, limit: int = 8):
    if not isinstance(value, list):
        return ()
    return tuple(str(item).strip() for item in value if str(item).strip())[:limit]


class ReflectionAgent:
    """预测复盘。 / Writes a post-mortem for one resolved prediction."""

    def __init__(
        self,
        llm_caller: Callable[..., Awaitable[str]],
        model: str = "",
        max_retries: int = 1,
    ):
        self._llm_caller = llm_caller
        self._model = model
        self._max_retries = max_retries

    async def reflect(self, reflection_input: PredictionReflectionInput) -> PredictionReflection:
        matched = reflection_input.outcome_matched
        prompt = REFLECTION_USER_PROMPT.format(
            question=reflection_input.question,
            predicted_outcome=reflection_input.predicted_outcome,
            actual_outcome=reflection_input.actual_outcome,
            matched="yes" if matched else "no",
            predicted_probability=(
                "n/a"
                if reflection_input.predicted_probability is None
                else f"{reflection_input.predicted_probability:.2f}"
            ),
            timeframe=reflection_input.timeframe or "n/a",
            category=reflection_input.category or "n/a",
            resolution_date=reflection_input.resolution_date or "n/a",
            notes=reflection_input.notes or "none",
        )

        last_error = None
        for attempt in range(1 + self._max_retries):
            try:
                raw = await self._llm_caller(
                    system_prompt=REFLECTION_SYSTEM_PROMPT,
                    user_prompt=prompt,
                )
                data = parse_json_from_llm(raw)
                summary = data.get("summary")
                if not isinstance(summary, str) or not summary.strip():
                    raise SchemaViolationError("summary must be a non-empty string")
                return PredictionReflection(
                    outcome_matched=matched,
                    brier_score=brier_score(reflection_input),
                    summary=summary.strip(),
                    lessons=_text_list(data.get("lessons")),
                    blind_spots=_text_list(
                        data.get("blindSpots", data.get("blind_spots"))
                    ),
                    model=self._model,
                )
            except ValueError as e:
                last_error = e
                logger.warning(f"ReflectionAgent attempt {attempt + 1} failed: {e}")

        raise SchemaViolationError(f"Reflection output unusable after retries: {last_error}")
