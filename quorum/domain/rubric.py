# rubric.py
# =============================================================================
# 评分量表 / Scoring rubric
#
# 四个核心维度的 0-10 锚定区间，外加按 rubric profile 的领域校准附言。
# / Anchored 0-10 bands for the four core dimensions plus a per-profile
# domain calibration addendum.
# =============================================================================

"""Anchored scoring rubric shared by every committee prompt."""

from __future__ import annotations

from typing import Dict, List, Tuple

from quorum.domain.classifier import map_domain_to_rubric_profile

BANDS = ("0-2", "3-4", "5-6", "7-8", "9-10")

# (label, anchors by band)
CORE_RUBRIC: List[Tuple[str, Tuple[str, ...]]] = [
    (
        "Market Opportunity",
        (
            "No clear user pain, no defensible demand, or market appears non-viable.",
            "Niche or shrinking demand with weak buying intent and unclear entry wedge.",
            "Real demand exists but crowded landscape and limited proof of early pull.",
            "Large demand with a credible wedge, identified early adopters, and timing tailwind.",
            "Exceptional market setup: strong timing, clear distribution path, and durable upside.",
        ),
    ),
    (
        "Technical Feasibility",
        (
            "Architecture is unrealistic, unsafe, or impossible for stated scope and team.",
            "High execution risk with major unresolved constraints and fragile implementation plan.",
            "Build is feasible but contains notable complexity, debt risk, or undefined constraints.",
            "Feasible implementation with pragmatic scope, manageable risks, and clear build path.",
            "Strong technical plan with clear milestones, robust architecture, and low unknowns.",
        ),
    ),
    (
        "Competitive Moat",
        (
            "Easily copyable concept with no differentiation beyond hype or branding.",
            "Weak differentiation and strong incumbents likely to out-execute quickly.",
            "Some differentiation exists but moat durability remains uncertain.",
            "Clear differentiation with evidence of defensibility (data, distribution, network effects).",
            "Compelling and durable moat with sustained advantage that is difficult to replicate.",
        ),
    ),
    (
        "Execution Readiness",
        (
            "No credible path to launch, major team or operational blockers unresolved.",
            "Execution plan is weak and likely to miss critical milestones.",
            "Execution path exists but requires meaningful derisking before scale.",
            "Team and plan can deliver MVP with realistic milestones and resource mapping.",
            "Exceptional execution readiness with clear milestones, ownership, and launch discipline.",
        ),
    ),
]

PROFILE_ADDENDA: Dict[str, str] = {
    "defi": (
        "Domain calibration (DeFi):\n"
        "- Penalize unsustainable yield mechanics, unclear liquidation design, or weak security posture.\n"
        "- Reward clear value accrual, realistic liquidity strategy, and explicit risk controls."
    ),
    "meme": (
        "Domain calibration (Meme asset):\n"
        "- Penalize vague distribution plans, concentrated holder risk, and narrative-only utility.\n"
        "- Reward fair launch mechanics, transparent liquidity plans, and credible community growth loops."
    ),
    "ai": (
        "Domain calibration (AI):\n"
        "- Penalize thin wrapper products with no proprietary data moat or distribution advantage.\n"
        "- Reward differentiated model strategy, unique data loops, and realistic acquisition channels."
    ),
    "saas": (
        "Domain calibration (SaaS):\n"
        "- Penalize weak unit economics, vague ICP definition, and churn-prone onboarding assumptions.\n"
        "- Reward clear CAC/LTV logic, retention evidence, and expansion revenue paths."
    ),
    "consumer": (
        "Domain calibration (Consumer):\n"
        "- Penalize shallow engagement loops, no distribution edge, and weak habit formation assumptions.\n"
        "- Reward clear retention loops, organic growth vectors, and measurable user value at low friction."
    ),
    "generic": (
        "Domain calibration (Generic):\n"
        "- Adjust emphasis by category, but keep score anchors consistent and evidence-driven."
    ),
}


def build_scoring_rubric(domain) -> str:
    blocks = []
    for label, anchors in CORE_RUBRIC:
        lines = [f"{label}:"]
        lines.extend(f"- {band}: {anchor}" for band, anchor in zip(BANDS, anchors))
        blocks.append("\n".join(lines))

    profile = map_domain_to_rubric_profile(domain)
    return (
        "SCORING RUBRIC (MANDATORY):\n"
        "Use these anchored definitions for every 0-10 sub-score. "
        "Do not invent custom scales.\n\n"
        + "\n\n".join(blocks)
        + "\n\nScoring discipline rules:\n"
        "- Show sub-scores with one-line evidence-backed rationale per dimension.\n"
        "- Final score must be a weighted synthesis of sub-scores, not a vibes-based guess.\n"
        "- If evidence is missing, lower confidence and note uncertainty explicitly.\n\n"
        + PROFILE_ADDENDA[profile]
    )
