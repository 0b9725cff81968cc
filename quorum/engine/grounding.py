# grounding.py
# =============================================================================
# 依据数据简报 / Grounding brief
#
# 将调用方提供的 GroundingSnapshot 渲染为带标签的段落并按 token 预算截断；
# 无数据时输出 "no external grounding" 提示。
# / Render the caller's GroundingSnapshot as tagged sections trimmed to a
# token budget; without data emit a "no external grounding" notice.
# =============================================================================

"""Grounding brief formatting for committee prompts.

Renders an optional GroundingSnapshot as tagged sections that roles cite
with inline evidence tags, and trims the brief to a prompt token budget.
"""

from __future__ import annotations

import math
from typing import Optional

from quorum.primitives.models import GroundingSnapshot

NO_GROUNDING_NOTICE = (
    "GROUNDING BRIEF: no external grounding data was supplied for this run.\n"
    "- Cite [SUBMISSION] for claims taken from the submission itself.\n"
    "- Treat market and competitive claims as unverified and lower confidence."
)
TRUNCATION_MARKER = "...[truncated to fit prompt token budget]"


def estimate_prompt_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def fit_to_token_budget(text: str, max_tokens: int) -> str:
    if estimate_prompt_tokens(text) <= max_tokens:
        return text
    max_chars = max(80, max_tokens * 4 - 64)
    return f"{text[:max_chars].rstrip()}\n{TRUNCATION_MARKER}"


def format_grounding_brief(
    snapshot: Optional[GroundingSnapshot],
    max_tokens: int = 1200,
) -> str:
    if snapshot is None or snapshot.is_empty:
        return NO_GROUNDING_NOTICE

    available = snapshot.available_tags()
    lines = [
        "GROUNDING BRIEF (structured, decision-relevant):",
        "- coverage: " + ", ".join(
            f"{tag.lower()}={'yes' if tag in available else 'no'}"
            for tag, _ in snapshot.sections()
        ),
        "- staleSources: " + (", ".join(t.lower() for t in snapshot.stale) or "none"),
        "- cite sources with their tags, e.g. [MARKET_SNAPSHOT]; use [SUBMISSION] "
        "for claims from the submission itself",
    ]
    for tag, body in snapshot.sections():
        lines.append("")
        freshness = "STALE" if tag in snapshot.stale else "FRESH"
        fetched = snapshot.fetched_at.get(tag, "unknown")
        if body and body.strip():
            lines.append(f"[{tag}] {freshness} | fetched_at={fetched}")
            for line in body.strip().splitlines():
                item = line.strip().lstrip("-*").strip()
                if item:
                    lines.append(f"- {item}")
        else:
            lines.append(f"[{tag}] source=unknown | freshness=unknown")
            lines.append("- data: unavailable")

    return fit_to_token_budget("\n".join(lines), max_tokens)
