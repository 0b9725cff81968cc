# models.py
# =============================================================================
# 委员会评估的核心数据模型 / Core data models for committee evaluation
#
# 包含 / Contains:
#   - 输入: IdeaSubmission, GroundingSnapshot, PredictionReflectionInput
#   - 枚举: ProjectDomain, CommitteeRole
#   - 中间结果: RoleAnalysis, JudgeSynthesis, StructuredAnalysis
#   - 输出: CommitteeResult, CommitteeMeta, VerifierOutcome, DisagreementMetrics
#   - 配置: CommitteeSettings
#
# 所有结果对象均为 frozen dataclass，组装完成后不可变。
# / All result objects are frozen dataclasses, immutable once assembled.
# =============================================================================

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from quorum.errors import InvalidSubmissionError


# =============================================================================
# 枚举 / Enumerations
# =============================================================================


class ProjectDomain(str, Enum):
    """项目领域（封闭集合）。 / Project domain, a closed set."""

    DECENTRALIZED_FINANCE = "decentralized-finance"
    MEME_ASSET = "meme-asset"
    APPLIED_AI = "applied-ai"
    SUBSCRIPTION_SOFTWARE = "subscription-software"
    CONSUMER = "consumer"
    HARDWARE = "hardware"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> Optional[ProjectDomain]:
        """Accept an enum member or its value in any case/separator; None if unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower().replace("_", "-").replace(" ", "-")
        for member in cls:
            if member.value == key:
                return member
        return None


class CommitteeRole(str, Enum):
    """委员会角色。 / Committee role."""

    BEAR = "bear"
    BULL = "bull"
    JUDGE = "judge"


# 叙事中可引用的证据标签 / Evidence tags that may be cited in narratives
GROUNDING_TAGS = (
    "MARKET_SNAPSHOT",
    "TOKEN_SECURITY",
    "COMPETITIVE_MEMO",
    "WEB_SEARCH",
)
SUBMISSION_TAG = "SUBMISSION"
EVIDENCE_TAGS = GROUNDING_TAGS + (SUBMISSION_TAG,)


# =============================================================================
# 输入 / Inputs
# =============================================================================


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _freeze_mappings(instance: Any, *names: str) -> None:
    """把 dict 字段替换为只读视图。 / Replace dict fields with read-only views."""
    for name in names:
        value = getattr(instance, name)
        if not isinstance(value, MappingProxyType):
            object.__setattr__(instance, name, MappingProxyType(dict(value)))


def _string_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = [part for part in value.split(",")]
    else:
        items = list(value)
    return tuple(sorted({_text(item) for item in items if _text(item)}))


@dataclass(frozen=True)
class IdeaSubmission:
    """一次评估的不可变输入。 / Immutable input to a single evaluation."""

    description: str
    project_type: str = ""
    team_size: str = ""
    resources: Tuple[str, ...] = ()
    success_definition: str = ""
    response_style: str = "balanced"
    mvp_scope: str = ""
    go_to_market: Optional[str] = None
    launch_liquidity_plan: Optional[str] = None
    focus_hints: Tuple[str, ...] = ()
    domain_override: Optional[ProjectDomain] = None

    # 字段别名（camelCase 输入） / camelCase aliases accepted by from_dict
    _ALIASES = {
        "projectType": "project_type",
        "teamSize": "team_size",
        "successDefinition": "success_definition",
        "responseStyle": "response_style",
        "mvpScope": "mvp_scope",
        "goToMarket": "go_to_market",
        "launchLiquidityPlan": "launch_liquidity_plan",
        "focusHints": "focus_hints",
        "domainOverride": "domain_override",
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> IdeaSubmission:
        """从字典构建，接受 camelCase 或 snake_case 键。

        / Build from a mapping with camelCase or snake_case keys.

        Raises:
            InvalidSubmissionError: description is missing or empty.
        """
        if not isinstance(data, dict):
            raise InvalidSubmissionError("Submission must be a mapping")
        normalized = {cls._ALIASES.get(k, k): v for k, v in data.items()}
        description = _text(normalized.get("description"))
        if not description:
            raise InvalidSubmissionError('Field "description" is required')

        override = normalized.get("domain_override")
        domain_override = ProjectDomain.coerce(override) if override else None

        return cls(
            description=description,
            project_type=_text(normalized.get("project_type")),
            team_size=_text(normalized.get("team_size")),
            resources=_string_tuple(normalized.get("resources")),
            success_definition=_text(normalized.get("success_definition")),
            response_style=_text(normalized.get("response_style")) or "balanced",
            mvp_scope=_text(normalized.get("mvp_scope")),
            go_to_market=_text(normalized.get("go_to_market")) or None,
            launch_liquidity_plan=(
                _text(normalized.get("launch_liquidity_plan")) or None
            ),
            focus_hints=_string_tuple(normalized.get("focus_hints")),
            domain_override=domain_override,
        )

    def canonical(self) -> Dict[str, Any]:
        """Canonical mapping used for cache keys (stable ordering, plain values)."""
        return {
            "description": self.description,
            "project_type": self.project_type.strip().lower(),
            "team_size": self.team_size.strip().lower(),
            "resources": sorted(self.resources),
            "success_definition": self.success_definition,
            "response_style": self.response_style.strip().lower(),
            "mvp_scope": self.mvp_scope,
            "go_to_market": self.go_to_market,
            "launch_liquidity_plan": self.launch_liquidity_plan,
            "focus_hints": sorted(self.focus_hints),
            "domain_override": (
                self.domain_override.value if self.domain_override else None
            ),
        }


@dataclass(frozen=True)
class GroundingSnapshot:
    """外部提供的可选依据数据。 / Optional grounding data supplied by the caller.

    每个字段是已格式化的文本块；fetched_at 以标签为键记录获取时间，
    stale 列出已过期的标签。
    / Each field is a preformatted text block; fetched_at maps tag -> fetch
    time and stale lists tags beyond their freshness window.
    """

    market_snapshot: Optional[str] = None
    token_security: Optional[str] = None
    competitive_memo: Optional[str] = None
    web_search: Optional[str] = None
    fetched_at: Dict[str, str] = field(default_factory=dict)
    stale: Tuple[str, ...] = ()

    def sections(self) -> List[Tuple[str, Optional[str]]]:
        return [
            ("MARKET_SNAPSHOT", self.market_snapshot),
            ("TOKEN_SECURITY", self.token_security),
            ("COMPETITIVE_MEMO", self.competitive_memo),
            ("WEB_SEARCH", self.web_search),
        ]

    def available_tags(self) -> Tuple[str, ...]:
        return tuple(tag for tag, body in self.sections() if body and body.strip())

    @property
    def is_empty(self) -> bool:
        return not self.available_tags()

    def canonical(self) -> Dict[str, Any]:
        return {
            tag: body for tag, body in self.sections() if body and body.strip()
        }


# =============================================================================
# 领域分类 / Domain classification
# =============================================================================


@dataclass(frozen=True)
class DomainClassification:
    domain: ProjectDomain
    confidence: str  # "high" | "medium" | "low"
    matched_signals: Tuple[str, ...] = ()
    used_hint: bool = False
    from_override: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain.value,
            "confidence": self.confidence,
            "matched_signals": list(self.matched_signals),
            "used_hint": self.used_hint,
            "from_override": self.from_override,
        }


# =============================================================================
# 角色输出 / Role outputs
# =============================================================================


@dataclass(frozen=True)
class RoleAnalysis:
    """Bear / Bull 单次分析结果。 / Output of one bear or bull pass.

    score 为角色自身尺度：bear 为风险分（越高越差），bull 为上行分。
    / score is on the role's own scale: risk for bear, upside for bull.
    """

    role: CommitteeRole
    verdict: str
    score: float
    commentary: str
    points: Tuple[str, ...] = ()
    dimension_scores: Mapping[str, float] = field(default_factory=dict)
    structured_case: str = ""
    model: str = ""
    used_fallback: bool = False

    def __post_init__(self):
        _freeze_mappings(self, "dimension_scores")

    @property
    def normalized_score(self) -> float:
        """0-100, higher is more favorable."""
        if self.role is CommitteeRole.BEAR:
            return 100.0 - self.score
        return self.score

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["role"] = self.role.value
        data["points"] = list(self.points)
        data["dimension_scores"] = dict(self.dimension_scores)
        return data


@dataclass(frozen=True)
class ThemeBreakdown:
    score: Optional[float]
    strengths: Tuple[str, ...] = ()
    risks: Tuple[str, ...] = ()
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "strengths": list(self.strengths),
            "risks": list(self.risks),
            "notes": self.notes,
        }


@dataclass(frozen=True)
class IdeaSummary:
    title: str
    one_liner: str
    main_verdict: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


THEMES = ("technical", "tokenomics", "market", "execution")


@dataclass(frozen=True)
class JudgeSynthesis:
    """Judge 合成结果（校准前）。 / Judge synthesis before calibration."""

    overall_score: float
    summary: IdeaSummary
    technical: ThemeBreakdown
    tokenomics: ThemeBreakdown
    market: ThemeBreakdown
    execution: ThemeBreakdown
    recommendations: Tuple[str, ...] = ()
    structured_analysis: str = ""
    model: str = ""
    used_fallback: bool = False

    def themes(self) -> Dict[str, ThemeBreakdown]:
        return {name: getattr(self, name) for name in THEMES}


# =============================================================================
# 结构化叙事解析结果 / Parsed structured narrative
# =============================================================================


@dataclass(frozen=True)
class DimensionAssessment:
    name: str
    evidence: str = ""
    reasoning: str = ""
    uncertainty: str = ""
    sub_score: Optional[float] = None
    citations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StructuredAnalysis:
    sections: Tuple[str, ...] = ()
    dimensions: Tuple[DimensionAssessment, ...] = ()
    evidence_lines: Tuple[str, ...] = ()
    composition: Optional[str] = None
    final_score: Optional[float] = None
    confidence_label: Optional[str] = None
    top_risk: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    def dimension(self, name: str) -> Optional[DimensionAssessment]:
        for dim in self.dimensions:
            if dim.name == name:
                return dim
        return None

    @property
    def has_overall(self) -> bool:
        return "OVERALL" in self.sections


# =============================================================================
# 校验 / Verification
# =============================================================================


@dataclass(frozen=True)
class VerificationIssue:
    check: str
    message: str
    severity: str  # "fatal" | "repairable" | "soft"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VerificationLogEntry:
    checks_run: int
    checks_passed: int
    checks_failed: int
    repairs_attempted: int
    repairs_succeeded: int
    fatal_failure: bool
    duration_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VerifierOutcome:
    status: str  # "pass" | "repaired" | "hard_fail"
    issues: Tuple[VerificationIssue, ...] = ()
    repaired: bool = False
    repairs_used: int = 0
    checks_run: int = 0
    checks_failed: int = 0
    quality_warnings: Tuple[str, ...] = ()
    internal_warnings: Tuple[str, ...] = ()
    log: Optional[VerificationLogEntry] = None

    def to_dict(self, include_internal: bool = False) -> Dict[str, Any]:
        data = {
            "status": self.status,
            "issues": [issue.to_dict() for issue in self.issues],
            "repaired": self.repaired,
            "repairs_used": self.repairs_used,
            "checks_run": self.checks_run,
            "checks_failed": self.checks_failed,
            "quality_warnings": list(self.quality_warnings),
        }
        if include_internal:
            data["internal_warnings"] = list(self.internal_warnings)
            data["log"] = self.log.to_dict() if self.log else None
        return data


# =============================================================================
# 分歧与加权 / Disagreement and weighting
# =============================================================================


@dataclass(frozen=True)
class DisagreementMetrics:
    overall_score_stddev: float
    high_disagreement_flag: bool
    disagreement_note: str
    normalized_scores: Mapping[str, float] = field(default_factory=dict)
    dimensional_disagreement: Mapping[str, float] = field(default_factory=dict)
    top_disagreement_dimension: Optional[str] = None
    compared_agents: int = 0

    def __post_init__(self):
        _freeze_mappings(self, "normalized_scores", "dimensional_disagreement")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score_stddev": self.overall_score_stddev,
            "high_disagreement_flag": self.high_disagreement_flag,
            "disagreement_note": self.disagreement_note,
            "normalized_scores": dict(self.normalized_scores),
            "dimensional_disagreement": dict(self.dimensional_disagreement),
            "top_disagreement_dimension": self.top_disagreement_dimension,
            "compared_agents": self.compared_agents,
        }


@dataclass(frozen=True)
class WeightedScore:
    score: float
    components: Mapping[str, float] = field(default_factory=dict)
    weights: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        _freeze_mappings(self, "components", "weights")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "components": dict(self.components),
            "weights": dict(self.weights),
        }


# =============================================================================
# 最终结果 / Final result
# =============================================================================


@dataclass(frozen=True)
class CommitteeMeta:
    confidence_level: str
    confidence_score: float
    evidence_coverage: float
    verifier_status: str
    weighted_score: WeightedScore
    committee_disagreement: DisagreementMetrics
    domain: DomainClassification
    raw_judge_score: float
    calibration_notes: Tuple[str, ...] = ()
    debate_disagreement_index: float = 0.0
    model_route: Mapping[str, str] = field(default_factory=dict)
    fallback_used: bool = False
    quality_warnings: Tuple[str, ...] = ()
    verifier: Optional[VerifierOutcome] = None

    def __post_init__(self):
        _freeze_mappings(self, "model_route")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "confidence_level": self.confidence_level,
            "confidence_score": self.confidence_score,
            "evidence_coverage": self.evidence_coverage,
            "verifier_status": self.verifier_status,
            "weighted_score": self.weighted_score.to_dict(),
            "committee_disagreement": self.committee_disagreement.to_dict(),
            "domain": self.domain.to_dict(),
            "raw_judge_score": self.raw_judge_score,
            "calibration_notes": list(self.calibration_notes),
            "debate_disagreement_index": self.debate_disagreement_index,
            "model_route": dict(self.model_route),
            "fallback_used": self.fallback_used,
            "quality_warnings": list(self.quality_warnings),
            # 内部诊断不对外暴露 / internal diagnostics are never surfaced
            "verifier": self.verifier.to_dict() if self.verifier else None,
        }


@dataclass(frozen=True)
class CommitteeResult:
    overall_score: float
    summary: IdeaSummary
    technical: ThemeBreakdown
    tokenomics: ThemeBreakdown
    market: ThemeBreakdown
    execution: ThemeBreakdown
    recommendations: Tuple[str, ...]
    structured_analysis: str
    bear: RoleAnalysis
    bull: RoleAnalysis
    meta: CommitteeMeta

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "summary": self.summary.to_dict(),
            "technical": self.technical.to_dict(),
            "tokenomics": self.tokenomics.to_dict(),
            "market": self.market.to_dict(),
            "execution": self.execution.to_dict(),
            "recommendations": list(self.recommendations),
            "structured_analysis": self.structured_analysis,
            "bear": self.bear.to_dict(),
            "bull": self.bull.to_dict(),
            "meta": self.meta.to_dict(),
        }


# =============================================================================
# 预测复盘 / Prediction reflection
# =============================================================================


def _normalize_probability(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise InvalidSubmissionError(f'Field "{name}" must be a number')
    if parsed != parsed or parsed < 0:
        raise InvalidSubmissionError(f'Field "{name}" must be zero or positive')
    normalized = parsed / 100 if parsed > 1 else parsed
    if normalized > 1:
        raise InvalidSubmissionError(f'Field "{name}" must be 0-1 or 0-100')
    return normalized


def _required_text(data: Dict[str, Any], key: str, name: str, limit: int) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidSubmissionError(f'Field "{name}" is required')
    return value.strip()[:limit]


def _optional_text(value: Any, limit: int) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()[:limit]


@dataclass(frozen=True)
class PredictionReflectionInput:
    """已结算预测的复盘输入。 / Input for reflecting on a resolved prediction."""

    question: str
    predicted_outcome: str
    actual_outcome: str
    insight_id: Optional[str] = None
    predicted_probability: Optional[float] = None
    actual_probability: Optional[float] = None
    resolution_date: Optional[str] = None
    timeframe: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PredictionReflectionInput:
        """Validate and sanitize a raw payload.

        Probabilities above 1 are read as percentages. Text fields are
        trimmed and truncated; resolution_date must parse as ISO-8601.

        Raises:
            InvalidSubmissionError: on any invalid field.
        """
        if not isinstance(data, dict):
            raise InvalidSubmissionError("Request body must be a JSON object")

        def pick(snake: str, camel: str) -> Any:
            return data.get(snake, data.get(camel))

        normalized = {
            "question": pick("question", "question"),
            "predicted_outcome": pick("predicted_outcome", "predictedOutcome"),
            "actual_outcome": pick("actual_outcome", "actualOutcome"),
        }
        resolution = pick("resolution_date", "resolutionDate")
        if resolution is not None:
            if not isinstance(resolution, str):
                raise InvalidSubmissionError(
                    'Field "resolutionDate" must be an ISO string'
                )
            try:
                parsed = datetime.fromisoformat(resolution.replace("Z", "+00:00"))
            except ValueError:
                raise InvalidSubmissionError(
                    'Field "resolutionDate" must be a valid date string'
                )
            resolution = parsed.isoformat()

        return cls(
            question=_required_text(normalized, "question", "question", 400),
            predicted_outcome=_required_text(
                normalized, "predicted_outcome", "predictedOutcome", 400
            ),
            actual_outcome=_required_text(
                normalized, "actual_outcome", "actualOutcome", 120
            ),
            insight_id=_optional_text(pick("insight_id", "insightId"), 120),
            predicted_probability=_normalize_probability(
                pick("predicted_probability", "predictedProbability"),
                "predictedProbability",
            ),
            actual_probability=_normalize_probability(
                pick("actual_probability", "actualProbability"),
                "actualProbability",
            ),
            resolution_date=resolution,
            timeframe=_optional_text(data.get("timeframe"), 60),
            category=_optional_text(data.get("category"), 60),
            notes=_optional_text(data.get("notes"), 1000),
        )

    @property
    def outcome_matched(self) -> bool:
        return (
            self.predicted_outcome.strip().lower()
            == self.actual_outcome.strip().lower()
        )

    def canonical(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("insight_id", None)
        return data


@dataclass(frozen=True)
class PredictionReflection:
    outcome_matched: bool
    brier_score: Optional[float]
    summary: str
    lessons: Tuple[str, ...] = ()
    blind_spots: Tuple[str, ...] = ()
    model: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["lessons"] = list(self.lessons)
        data["blind_spots"] = list(self.blind_spots)
        return data


# =============================================================================
# 配置 / Settings
# =============================================================================


@dataclass(frozen=True)
class CommitteeSettings:
    """委员会可调参数（进程级，启动时加载一次）。

    / Committee tunables, loaded once per process and passed explicitly.

    disagreement_sigma_threshold 以 10 分制 sigma 为单位；
    calibration 为线性曲线 raw + span * (coverage - pivot)。
    / The sigma threshold is in 10-point units; calibration is the linear
    curve raw + span * (coverage - pivot).
    """

    disagreement_sigma_threshold: float = 2.0
    calibration_span: float = 10.0
    calibration_pivot: float = 0.5
    citation_bonus: float = 2.0
    vague_description_chars: int = 100
    vague_description_penalty: float = 5.0
    missing_launch_plan_penalty: float = 5.0
    composition_tolerance: float = 0.5
    overall_score_tolerance: float = 10.0
    role_timeout: float = 25.0
    judge_timeout: float = 60.0
    repair_timeout: float = 30.0
    evaluation_timeout: float = 120.0
    cache_ttl: float = 600.0
    cache_max_entries: int = 50
    grounding_token_budget: int = 1200

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> CommitteeSettings:
        """Build from a mapping; unknown keys raise ValueError."""
        if not data:
            return cls()
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown committee settings: {', '.join(unknown)}")
        values = {}
        for name, raw in data.items():
            caster = int if known[name].default.__class__ is int else float
            values[name] = caster(raw)
        settings = cls(**values)
        if not 0.0 <= settings.calibration_pivot <= 1.0:
            raise ValueError("calibration_pivot must be within [0, 1]")
        if settings.calibration_span < 0:
            raise ValueError("calibration_span must be non-negative")
        return settings
