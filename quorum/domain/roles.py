# roles.py
# =============================================================================
# 委员会角色表与角色专业化构建 / Committee role table & role specialization
#
# 角色分派以数据表表达，而非分散的条件分支：
# / Role dispatch is expressed as lookup tables, not scattered conditionals:
#   - ROLE_DEFINITIONS: 角色 -> 标题/目标/基础维度/权重/执行指令
#   - DOMAIN_DIMENSION_OVERLAYS: (领域, 角色) -> 追加维度
#   - DOMAIN_EMPHASIS: (领域, 角色) -> 一句话领域侧重
# 新增角色或领域只需追加表项。 / New roles or domains are additive entries.
# =============================================================================

"""Role definitions and the role specialization block builder."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from quorum.domain.classifier import map_domain_to_rubric_profile, normalize_project_type
from quorum.primitives.models import CommitteeRole, ProjectDomain

R = CommitteeRole
D = ProjectDomain


@dataclass(frozen=True)
class RoleDefinition:
    role: CommitteeRole
    title: str
    objective: str
    base_dimensions: Tuple[str, ...]
    weight: float
    instructions: Tuple[str, ...]


ROLE_DEFINITIONS: Dict[CommitteeRole, RoleDefinition] = {
    R.BEAR: RoleDefinition(
        role=R.BEAR,
        title="Adversarial Critic + Technical Risk Assessor",
        objective=(
            "Stress test the downside and identify specific failure paths "
            "that could kill the thesis."
        ),
        base_dimensions=(
            "technicalFeasibility",
            "failureModes",
            "competitiveThreats",
            "regulatoryRisk",
        ),
        weight=0.3,
        instructions=(
            "Prioritize falsification: what makes this idea fail in real deployment?",
            "Use concrete failure modes, not generic risk statements.",
            "Assign lower scores when assumptions are unproven or security posture is weak.",
        ),
    ),
    R.BULL: RoleDefinition(
        role=R.BULL,
        title="Market Opportunity + Growth Analyst",
        objective=(
            "Find where outsized upside exists and what conditions would "
            "unlock durable growth."
        ),
        base_dimensions=(
            "marketOpportunity",
            "growthTrajectory",
            "customerDemand",
            "timingWindow",
        ),
        weight=0.3,
        instructions=(
            "Prioritize evidence-backed upside, not narrative-only optimism.",
            "Explain why demand can materialize despite competition.",
            "Assign higher scores only when wedge and expansion paths are explicit.",
        ),
    ),
    R.JUDGE: RoleDefinition(
        role=R.JUDGE,
        title="Calibration Synthesizer + Decision Maker",
        objective=(
            "Calibrate and synthesize committee outputs into a coherent, "
            "evidence-weighted final decision."
        ),
        base_dimensions=(
            "scoreCalibration",
            "crossValidation",
            "uncertaintyHandling",
            "finalComposition",
        ),
        weight=0.4,
        instructions=(
            "Do not re-run full analysis; reconcile bear/bull with rubric anchors.",
            "Highlight disagreements and reduce confidence when evidence is thin.",
            "Show explicit composition math for final score.",
        ),
    ),
}

DOMAIN_DIMENSION_OVERLAYS: Dict[ProjectDomain, Dict[CommitteeRole, Tuple[str, ...]]] = {
    D.DECENTRALIZED_FINANCE: {
        R.BEAR: ("smartContractSecurity", "tokenomicsRisk"),
        R.BULL: ("valueAccrualDesign", "liquidityStrategy"),
        R.JUDGE: ("securityAdjustedCalibration",),
    },
    D.MEME_ASSET: {
        R.BEAR: ("holderConcentration", "rugPullVectors"),
        R.BULL: ("narrativeMomentum", "communityDistribution"),
        R.JUDGE: ("narrativeVsRiskCalibration",),
    },
    D.APPLIED_AI: {
        R.BEAR: ("modelCommoditizationRisk", "integrationComplexity"),
        R.BULL: ("dataMoatStrength", "distributionCompounding"),
        R.JUDGE: ("moatDurabilityCalibration",),
    },
    D.SUBSCRIPTION_SOFTWARE: {
        R.BEAR: ("churnRisk", "cacPaybackRisk"),
        R.BULL: ("unitEconomicsUpside", "expansionRevenue"),
        R.JUDGE: ("unitEconomicsCalibration",),
    },
    D.CONSUMER: {
        R.BEAR: ("retentionRisk", "distributionFragility"),
        R.BULL: ("engagementLoops", "viralAcquisition"),
        R.JUDGE: ("retentionAdjustedCalibration",),
    },
    D.HARDWARE: {
        R.BEAR: ("manufacturingRisk", "supplyChainRisk"),
        R.BULL: ("hardwareDifferentiation", "channelLeverage"),
        R.JUDGE: ("operationalRiskCalibration",),
    },
    D.OTHER: {},
}

_GENERIC_EMPHASIS = "Domain emphasis: apply role lens while staying evidence-constrained."

DOMAIN_EMPHASIS: Dict[ProjectDomain, Dict[CommitteeRole, str]] = {
    D.DECENTRALIZED_FINANCE: {
        R.BEAR: "Domain emphasis (DeFi): liquidation mechanics, oracle risk, governance attack surface.",
        R.BULL: "Domain emphasis (DeFi): fee capture path, liquidity bootstrapping, repeat usage behavior.",
        R.JUDGE: "Domain emphasis (DeFi): calibrate around security realism and sustainable yield assumptions.",
    },
    D.MEME_ASSET: {
        R.BEAR: "Domain emphasis (Meme asset): rug vectors, holder concentration, distribution fragility.",
        R.BULL: "Domain emphasis (Meme asset): narrative timing, distribution loops, community retention.",
        R.JUDGE: "Domain emphasis (Meme asset): calibrate narrative upside against concentration and trust risk.",
    },
    D.APPLIED_AI: {
        R.BEAR: "Domain emphasis (AI): wrapper risk, model commoditization, integration complexity.",
        R.BULL: "Domain emphasis (AI): proprietary data loops, distribution compounding, defensibility.",
        R.JUDGE: "Domain emphasis (AI): calibrate opportunity against moat durability and execution realism.",
    },
    D.SUBSCRIPTION_SOFTWARE: {
        R.BEAR: "Domain emphasis (SaaS): churn sensitivity, weak ICP risk, and CAC/LTV breakpoints.",
        R.BULL: "Domain emphasis (SaaS): expansion revenue, retention loops, and distribution compounding.",
        R.JUDGE: "Domain emphasis (SaaS): calibrate growth claims against retention and payback discipline.",
    },
    D.CONSUMER: {
        R.BEAR: "Domain emphasis (Consumer): retention fragility, distribution dependency, and engagement decay.",
        R.BULL: "Domain emphasis (Consumer): habit loops, social growth vectors, and creator/community pull.",
        R.JUDGE: "Domain emphasis (Consumer): calibrate upside with realistic retention and acquisition efficiency.",
    },
    D.HARDWARE: {
        R.BEAR: "Domain emphasis (Hardware): manufacturing risk, BOM pressure, and supply-chain fragility.",
        R.BULL: "Domain emphasis (Hardware): defensible product differentiation and distribution channel leverage.",
        R.JUDGE: "Domain emphasis (Hardware): calibrate upside against build cycles and operational execution risk.",
    },
    D.OTHER: {},
}


def _weights_total() -> float:
    return math.fsum(definition.weight for definition in ROLE_DEFINITIONS.values())


if _weights_total() != 1.0:
    raise RuntimeError(f"Committee role weights must sum to 1.0, got {_weights_total()}")


def committee_weights() -> Dict[CommitteeRole, float]:
    return {role: definition.weight for role, definition in ROLE_DEFINITIONS.items()}


def get_role_dimensions(role: Any, domain: Any) -> List[str]:
    """基础维度 ∪ 领域追加维度，去重且保持基础顺序。

    / Base dimensions followed by new overlay dimensions, deduplicated.
    """
    definition = ROLE_DEFINITIONS[CommitteeRole(role)]
    resolved = ProjectDomain.coerce(domain) or D.OTHER
    dimensions = list(definition.base_dimensions)
    for dimension in DOMAIN_DIMENSION_OVERLAYS[resolved].get(definition.role, ()):
        if dimension not in dimensions:
            dimensions.append(dimension)
    return dimensions


def get_domain_emphasis(role: Any, domain: Any) -> str:
    resolved = ProjectDomain.coerce(domain) or D.OTHER
    return DOMAIN_EMPHASIS[resolved].get(CommitteeRole(role), _GENERIC_EMPHASIS)


def role_dimension_overlap(left: Any, right: Any, domain: Any = D.OTHER) -> List[str]:
    """Dimensions two roles share for a domain, in the left role's order."""
    right_dims = set(get_role_dimensions(right, domain))
    return [d for d in get_role_dimensions(left, domain) if d in right_dims]


def build_role_specialization_block(
    role: Any,
    domain: Any,
    project_type: Any = None,
) -> str:
    """构建角色专业化指令块（对相同输入确定性输出）。

    / Build the role specialization block; deterministic for identical input.
    """
    definition = ROLE_DEFINITIONS[CommitteeRole(role)]
    resolved = ProjectDomain.coerce(domain) or D.OTHER
    dimensions = get_role_dimensions(definition.role, resolved)

    lines = [
        "ROLE SPECIALIZATION:",
        f"Role: {definition.title}",
        f"Objective: {definition.objective}",
        f"Primary dimensions: {', '.join(dimensions)}",
        f"Weight in committee aggregation: {definition.weight}",
        (
            f"Domain routing: classifier={resolved.value}, "
            f"projectType={normalize_project_type(project_type)}, "
            f"rubricProfile={map_domain_to_rubric_profile(resolved)}"
        ),
        get_domain_emphasis(definition.role, resolved),
        "",
        "Execution instructions:",
    ]
    lines.extend(
        f"{index}. {instruction}"
        for index, instruction in enumerate(definition.instructions, start=1)
    )
    return "\n".join(lines)
