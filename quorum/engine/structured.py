# structured.py
# =============================================================================
# 结构化叙事解析器 / Structured narrative parser
#
# Judge 的 structuredAnalysis 是半结构化文本，按以下行级语法解析：
# / The judge's structuredAnalysis is semi-structured text parsed with a
# line-based grammar:
#
#   header   := "##" NAME                      -> 开启新节 / opens a section
#   field    := ("-" | "*") LABEL ":" VALUE    -> 节内字段 / section field
#   bullet   := ("-" | "*") TEXT               -> EVIDENCE 节的证据行
#   other    := 任意文本，记入 warnings / anything else, recorded as a warning
#
# 维度节 / Dimension sections: MARKET OPPORTUNITY, TECHNICAL FEASIBILITY,
#   COMPETITIVE MOAT, EXECUTION READINESS，字段 Evidence / Reasoning /
#   Uncertainty / Sub-score: X/10。
# OVERALL 节 / OVERALL section: Composition (或 Formula) / Final score: X/10 /
#   Confidence: HIGH|MEDIUM|LOW / Top risk to thesis。
#
# 解析器从不抛异常：缺失项保留为 None，由 verifier 判定。
# / The parser never raises; missing items stay None for the verifier.
# =============================================================================

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from quorum.primitives.models import (
    EVIDENCE_TAGS,
    DimensionAssessment,
    StructuredAnalysis,
)

DIMENSION_SECTIONS: Tuple[str, ...] = (
    "MARKET OPPORTUNITY",
    "TECHNICAL FEASIBILITY",
    "COMPETITIVE MOAT",
    "EXECUTION READINESS",
)

# 维度节 -> 角色 roleScores 键 / dimension section -> roleScores key
DIMENSION_KEYS: Dict[str, str] = {
    "MARKET OPPORTUNITY": "marketOpportunity",
    "TECHNICAL FEASIBILITY": "technicalFeasibility",
    "COMPETITIVE MOAT": "competitiveMoat",
    "EXECUTION READINESS": "executionReadiness",
}

# 组合公式中的关键词 -> 维度节 / composition keyword -> dimension section
_COMPOSITION_KEYWORDS: Dict[str, str] = {
    "market": "MARKET OPPORTUNITY",
    "technical": "TECHNICAL FEASIBILITY",
    "tech": "TECHNICAL FEASIBILITY",
    "moat": "COMPETITIVE MOAT",
    "competitive": "COMPETITIVE MOAT",
    "execution": "EXECUTION READINESS",
}

DEFAULT_COMPOSITION_WEIGHTS: Dict[str, float] = {
    "MARKET OPPORTUNITY": 0.30,
    "TECHNICAL FEASIBILITY": 0.25,
    "COMPETITIVE MOAT": 0.25,
    "EXECUTION READINESS": 0.20,
}

COMPOSITION_TEMPLATE = (
    "(0.30 × market) + (0.25 × technical) + (0.25 × moat) + (0.20 × execution)"
)

_HEADER_RE = re.compile(r"^\s{0,3}#{2,3}\s*(.+?)\s*#*\s*$")
_FIELD_RE = re.compile(r"^\s*[-*]\s*([A-Za-z][A-Za-z \-]{0,40}?)\s*:\s*(.*)$")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(.*)$")
_SUB_SCORE_RE = re.compile(r"sub[- ]?score\s*:\s*(-?[0-9]+(?:\.[0-9]+)?)\s*/\s*10", re.I)
_FINAL_SCORE_RE = re.compile(r"(-?[0-9]+(?:\.[0-9]+)?)\s*/\s*10")
_CITATION_RE = re.compile(r"\[(" + "|".join(EVIDENCE_TAGS) + r")\]")
_TERM_RE = re.compile(r"([0-9]*\.?[0-9]+)\s*[×x*]\s*([A-Za-z_ ]+)")
_CONFIDENCE_RE = re.compile(r"\b(HIGH|MEDIUM|LOW)\b", re.I)


def extract_citations(text: str) -> Tuple[str, ...]:
    seen: List[str] = []
    for tag in _CITATION_RE.findall(text or ""):
        if tag not in seen:
            seen.append(tag)
    return tuple(seen)


def _section_name(raw: str) -> str:
    return re.sub(r"\s+", " ", raw.strip().upper())


def parse_structured_analysis(text: Optional[str]) -> StructuredAnalysis:
    """将叙事文本解析为 StructuredAnalysis。 / Parse narrative text."""
    warnings: List[str] = []
    if not text or not text.strip():
        return StructuredAnalysis(warnings=("structured analysis is empty",))

    sections: List[str] = []
    section_lines: Dict[str, List[str]] = {}
    current: Optional[str] = None

    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        header = _HEADER_RE.match(line)
        if header:
            current = _section_name(header.group(1))
            if current in section_lines:
                warnings.append(f"line {line_no}: duplicate section '{current}'")
            else:
                sections.append(current)
                section_lines[current] = []
            continue
        if current is None:
            warnings.append(f"line {line_no}: text before first section header")
            continue
        section_lines[current].append(line)

    dimensions = []
    for name in DIMENSION_SECTIONS:
        if name in section_lines:
            dimensions.append(_parse_dimension(name, section_lines[name], warnings))

    evidence_lines = tuple(
        match.group(1).strip()
        for match in (_BULLET_RE.match(line) for line in section_lines.get("EVIDENCE", []))
        if match and match.group(1).strip()
    )

    composition = final_score = confidence = top_risk = None
    for line in section_lines.get("OVERALL", []):
        field = _FIELD_RE.match(line)
        if not field:
            warnings.append(f"OVERALL: unrecognized line '{line.strip()[:60]}'")
            continue
        label, value = field.group(1).strip().lower(), field.group(2).strip()
        if label in ("composition", "formula"):
            composition = value or None
        elif label == "final score":
            match = _FINAL_SCORE_RE.search(value)
            if match:
                final_score = float(match.group(1))
            else:
                warnings.append(f"OVERALL: final score not in X/10 form: '{value[:40]}'")
        elif label == "confidence":
            match = _CONFIDENCE_RE.search(value)
            confidence = match.group(1).upper() if match else None
        elif label.startswith("top risk"):
            top_risk = value or None

    return StructuredAnalysis(
        sections=tuple(sections),
        dimensions=tuple(dimensions),
        evidence_lines=evidence_lines,
        composition=composition,
        final_score=final_score,
        confidence_label=confidence,
        top_risk=top_risk,
        warnings=tuple(warnings),
    )


def _parse_dimension(
    name: str, lines: List[str], warnings: List[str]
) -> DimensionAssessment:
    values: Dict[str, str] = {}
    sub_score: Optional[float] = None
    for line in lines:
        score_match = _SUB_SCORE_RE.search(line)
        if score_match:
            sub_score = float(score_match.group(1))
            continue
        field = _FIELD_RE.match(line)
        if field:
            label = field.group(1).strip().lower()
            if label in ("evidence", "reasoning", "uncertainty"):
                values[label] = field.group(2).strip()
                continue
            if label.startswith("sub"):
                warnings.append(f"{name}: sub-score not in X/10 form")
                continue
        warnings.append(f"{name}: unrecognized line '{line.strip()[:60]}'")

    return DimensionAssessment(
        name=name,
        evidence=values.get("evidence", ""),
        reasoning=values.get("reasoning", ""),
        uncertainty=values.get("uncertainty", ""),
        sub_score=sub_score,
        citations=extract_citations("\n".join(lines)),
    )


def parse_composition_weights(composition: Optional[str]) -> Dict[str, float]:
    """Weights named in a composition line, keyed by dimension section.

    Falls back to the template weights when the line names fewer than all
    four dimensions.
    """
    weights: Dict[str, float] = {}
    for raw_weight, raw_name in _TERM_RE.findall(composition or ""):
        words = raw_name.strip().lower().split()
        section = next(
            (_COMPOSITION_KEYWORDS[w] for w in words if w in _COMPOSITION_KEYWORDS),
            None,
        )
        if section and section not in weights:
            weights[section] = float(raw_weight)
    if len(weights) < len(DIMENSION_SECTIONS):
        return dict(DEFAULT_COMPOSITION_WEIGHTS)
    return weights


def composed_score(analysis: StructuredAnalysis) -> Optional[float]:
    """Weighted sum of the dimension sub-scores; None if any is missing."""
    weights = parse_composition_weights(analysis.composition)
    total = 0.0
    for name in DIMENSION_SECTIONS:
        dimension = analysis.dimension(name)
        if dimension is None or dimension.sub_score is None:
            return None
        total += weights[name] * dimension.sub_score
    return round(total, 2)


def dimension_scores(analysis: StructuredAnalysis) -> Dict[str, float]:
    """Sub-scores keyed like role scores (marketOpportunity, ...)."""
    return {
        DIMENSION_KEYS[dim.name]: dim.sub_score
        for dim in analysis.dimensions
        if dim.sub_score is not None
    }
