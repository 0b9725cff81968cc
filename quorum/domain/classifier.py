# classifier.py
# =============================================================================
# 领域分类器 / Domain classifier
#
# 职责 / Responsibilities:
#   - 将自由文本的 projectType 提示（及可选描述）映射到 ProjectDomain
#     / Map a free-text projectType hint (and optional description) to a ProjectDomain
#   - 显式 override 优先且被信任 / An explicit override wins and is trusted
#   - 全函数：任何无法识别的输入都落到 "other"，从不抛异常
#     / Total: any unrecognized input resolves to "other", never raises
# =============================================================================

"""Keyword/heuristic domain classification."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from quorum.primitives.models import DomainClassification, ProjectDomain

D = ProjectDomain

# projectType 别名的精确映射 / Exact aliases for normalized projectType values
PROJECT_TYPE_ALIASES: Dict[str, ProjectDomain] = {
    "defi": D.DECENTRALIZED_FINANCE,
    "crypto-defi": D.DECENTRALIZED_FINANCE,
    "decentralized-finance": D.DECENTRALIZED_FINANCE,
    "memecoin": D.MEME_ASSET,
    "meme-coin": D.MEME_ASSET,
    "meme": D.MEME_ASSET,
    "meme-asset": D.MEME_ASSET,
    "ai": D.APPLIED_AI,
    "ai-ml": D.APPLIED_AI,
    "ml": D.APPLIED_AI,
    "applied-ai": D.APPLIED_AI,
    "nft": D.CONSUMER,
    "gaming": D.CONSUMER,
    "saas": D.SUBSCRIPTION_SOFTWARE,
    "subscription-software": D.SUBSCRIPTION_SOFTWARE,
    "consumer": D.CONSUMER,
    "hardware": D.HARDWARE,
    "other": D.OTHER,
}

DOMAIN_KEYWORDS: Dict[ProjectDomain, Tuple[str, ...]] = {
    D.DECENTRALIZED_FINANCE: (
        "blockchain", "defi", "smart contract", "liquidity", "dex",
        "staking", "yield", "on-chain", "tvl", "protocol", "amm",
        "governance token", "bridge", "wallet",
    ),
    D.MEME_ASSET: (
        "meme", "memecoin", "meme-asset", "meme asset", "degen", "pump",
        "community token", "fair launch", "bonding curve", "ticker",
        "viral token", "to the moon", "shitcoin",
    ),
    D.APPLIED_AI: (
        "ai", "machine learning", "ml", "llm", "model", "training",
        "inference", "fine-tune", "embedding", "rag", "transformer",
        "dataset", "gpu",
    ),
    D.SUBSCRIPTION_SOFTWARE: (
        "saas", "subscription", "mrr", "arr", "churn", "b2b", "enterprise",
        "per-seat", "crm", "onboarding", "workflow software",
    ),
    D.CONSUMER: (
        "consumer", "social", "creator", "influencer", "marketplace",
        "mobile app", "viral loop", "retention", "nft", "gaming", "game",
        "community", "collectors",
    ),
    D.HARDWARE: (
        "hardware", "device", "sensor", "chip", "manufacturing", "factory",
        "firmware", "iot", "pcb", "bom", "supply chain", "robotics",
    ),
}

RUBRIC_PROFILES: Dict[ProjectDomain, str] = {
    D.DECENTRALIZED_FINANCE: "defi",
    D.MEME_ASSET: "meme",
    D.APPLIED_AI: "ai",
    D.SUBSCRIPTION_SOFTWARE: "saas",
    D.CONSUMER: "consumer",
    D.HARDWARE: "generic",
    D.OTHER: "generic",
}

HINT_WEIGHT = 2.0
DESCRIPTION_WEIGHT = 1.0
HINTED_DESCRIPTION_WEIGHT = 1.2
ALIAS_BONUS = 3.0
MEME_OVER_DEFI_BONUS = 0.75
MIN_CONFIDENT_SCORE = 1.5
MAX_SIGNALS = 8

_SPACE_RE = re.compile(r"\s+")
_ALIAS_SEPARATORS_RE = re.compile(r"[\s_/]+")
_KEYWORD_PATTERNS = {
    keyword: re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])")
    for keywords in DOMAIN_KEYWORDS.values()
    for keyword in keywords
    if " " not in keyword
}


def _normalize(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return _SPACE_RE.sub(" ", value.strip().lower())


def normalize_project_type(project_type: Any) -> str:
    """Lower-cased, trimmed projectType; "unspecified" when empty."""
    return _normalize(project_type) or "unspecified"


def map_project_type_hint(project_type: Any) -> Optional[ProjectDomain]:
    """Exact alias lookup for a projectType hint. None when not an alias."""
    key = _ALIAS_SEPARATORS_RE.sub("-", _normalize(project_type))
    return PROJECT_TYPE_ALIASES.get(key)


def _keyword_hits(text: str, keyword: str) -> bool:
    if not text:
        return False
    pattern = _KEYWORD_PATTERNS.get(keyword)
    if pattern is None:
        return keyword in text
    return pattern.search(text) is not None


def classify_domain(
    project_type: Any = None,
    description: Any = None,
    override: Any = None,
) -> DomainClassification:
    """分类项目领域并给出置信度与命中信号。

    / Classify the project domain with a confidence and matched signals.
    """
    override_domain = ProjectDomain.coerce(override) if override else None
    if override_domain is not None:
        return DomainClassification(
            domain=override_domain,
            confidence="high",
            from_override=True,
        )

    hint_text = _normalize(project_type)
    description_text = _normalize(description)
    hinted = map_project_type_hint(project_type)

    scores: Dict[ProjectDomain, float] = {domain: 0.0 for domain in DOMAIN_KEYWORDS}
    hits: Dict[ProjectDomain, int] = {domain: 0 for domain in DOMAIN_KEYWORDS}
    signals: List[str] = []

    if hinted in scores:
        scores[hinted] += ALIAS_BONUS

    for domain, keywords in DOMAIN_KEYWORDS.items():
        for keyword in keywords:
            matched = False
            if _keyword_hits(hint_text, keyword):
                scores[domain] += HINT_WEIGHT
                matched = True
            if _keyword_hits(description_text, keyword):
                scores[domain] += (
                    HINTED_DESCRIPTION_WEIGHT if domain is hinted else DESCRIPTION_WEIGHT
                )
                matched = True
            if matched:
                hits[domain] += 1
                signals.append(f"{domain.value}:{keyword}")

    if hits[D.MEME_ASSET] >= 2 and hits[D.DECENTRALIZED_FINANCE] > 0:
        scores[D.MEME_ASSET] += MEME_OVER_DEFI_BONUS

    ranked = sorted(
        scores.items(),
        key=lambda item: (item[1], item[0] is hinted),
        reverse=True,
    )
    top_domain, top_score = ranked[0]
    runner_up = ranked[1][1] if len(ranked) > 1 else 0.0

    if top_score < MIN_CONFIDENT_SCORE:
        if hinted is not None:
            return DomainClassification(
                domain=hinted,
                confidence="low" if hinted is D.OTHER else "medium",
                matched_signals=tuple(signals[:MAX_SIGNALS]),
                used_hint=True,
            )
        return DomainClassification(
            domain=D.OTHER,
            confidence="low",
            matched_signals=tuple(signals[:MAX_SIGNALS]),
        )

    margin = top_score - runner_up
    if top_score >= 5 and margin >= 1.5:
        confidence = "high"
    elif top_score >= 3 and margin >= 0.75:
        confidence = "medium"
    else:
        confidence = "low"

    return DomainClassification(
        domain=top_domain,
        confidence=confidence,
        matched_signals=tuple(signals[:MAX_SIGNALS]),
        used_hint=hinted is not None,
    )


def resolve_domain(
    project_type: Any = None,
    override: Any = None,
    description: Any = None,
) -> ProjectDomain:
    """Return only the domain of classify_domain()."""
    return classify_domain(project_type, description, override).domain


def map_domain_to_rubric_profile(domain: Any) -> str:
    resolved = ProjectDomain.coerce(domain) or D.OTHER
    return RUBRIC_PROFILES[resolved]
