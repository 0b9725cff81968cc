# domain/__init__.py
# =============================================================================
# 领域分类与角色专业化 / Domain classification & role specialization
# =============================================================================

from quorum.domain.classifier import (
    classify_domain,
    map_domain_to_rubric_profile,
    resolve_domain,
)
from quorum.domain.roles import (
    ROLE_DEFINITIONS,
    build_role_specialization_block,
    committee_weights,
    get_domain_emphasis,
    get_role_dimensions,
)
from quorum.domain.rubric import build_scoring_rubric

__all__ = [
    "ROLE_DEFINITIONS",
    "build_role_specialization_block",
    "build_scoring_rubric",
    "classify_domain",
    "committee_weights",
    "get_domain_emphasis",
    "get_role_dimensions",
    "map_domain_to_rubric_profile",
    "resolve_domain",
]
