# engine/__init__.py
# =============================================================================
# Quorum 引擎模块: 委员会编排、校验、校准与缓存。
# =============================================================================

from quorum.engine.cache import EvaluationCache, MemoryCacheBackend
from quorum.engine.committee import CommitteeOrchestrator, ProgressCallback
from quorum.engine.verifier import QualityVerifier

__all__ = [
    "CommitteeOrchestrator",
    "EvaluationCache",
    "MemoryCacheBackend",
    "ProgressCallback",
    "QualityVerifier",
]
