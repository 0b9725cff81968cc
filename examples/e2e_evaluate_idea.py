#!/usr/bin/env python3
# =============================================================================
# e2e_evaluate_idea.py: 端到端委员会评估示例
# / End-to-end committee evaluation against real models
#
# 对内置的示例想法运行一次完整评估（Bear / Bull / Judge + 校验），
# 打印实时进度、校准后的分数与置信度。
#
# 用法 / Usage:
#   python examples/e2e_evaluate_idea.py saas
#   python examples/e2e_evaluate_idea.py meme --grounded
#   python examples/e2e_evaluate_idea.py all
#
# 依赖：项目根目录或 config/ 下存在 quorum_config.yaml。
# =============================================================================

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# 将项目根目录加入 sys.path，便于直接运行本脚本
_REPO_ROOT = Path(__file__).resolve().parent.parent
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from quorum.api.evaluate import EvaluationService
from quorum.errors import CommitteeError, EvaluationRejected
from quorum.primitives.events import EvaluationEvent
from quorum.primitives.models import GroundingSnapshot

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# 示例数据 / Sample ideas
# =============================================================================

IDEAS: Dict[str, Dict[str, Any]] = {
    "saas": {
        "description": (
            "Reconciliation software for mid-market finance teams. It imports bank "
            "feeds, matches them against ERP ledgers, and routes exceptions to an "
            "approval queue with an audit trail."
        ),
        "projectType": "B2B SaaS",
        "teamSize": "3",
        "resources": ["two engineers", "one ex-controller", "$400k pre-seed"],
        "mvpScope": "NetSuite + two bank connectors, rule-based matching",
        "goToMarket": "Outbound to controllers at 50-500 person companies",
    },
    "meme": {
        "description": (
            "A frog-themed community token on Base with a meme-first brand, a raid "
            "channel of four thousand holders and no product roadmap beyond culture."
        ),
        "projectType": "meme-asset launch, no utility",
        "teamSize": "2",
    },
}

GROUNDING: Dict[str, GroundingSnapshot] = {
    "saas": GroundingSnapshot(
        competitive_memo=(
            "BlackLine and FloQast dominate enterprise close; mid-market relies on "
            "spreadsheets and ERP-native matching."
        ),
    ),
    "meme": GroundingSnapshot(
        market_snapshot="FDV $4.1M | 24h volume $0.9M | holders 4,120",
        token_security="Top 10 wallets hold 38% of supply; LP unlocked.",
        stale=("TOKEN_SECURITY",),
    ),
}


# =============================================================================
# 进度显示 / Progress display
# =============================================================================

_BAR_WIDTH = 30


def _progress_bar(progress: float) -> str:
    filled = int(_BAR_WIDTH * progress)
    return f"[{'█' * filled}{'░' * (_BAR_WIDTH - filled)}] {progress:>5.1%}"


def print_progress(event: EvaluationEvent) -> None:
    """Terminal progress callback (sync)."""
    bar = _progress_bar(event.progress)
    if event.type == "stage_start":
        print(f"  {bar}  ▶ {event.stage}")
    elif event.type == "stage_end":
        detail = json.dumps(event.detail or {}, ensure_ascii=False)
        print(f"  {bar}  ✓ {event.stage} {detail}")
    elif event.type == "role_retry":
        print(f"  {bar}    ↻ {event.role} retrying on fallback model")
    elif event.type == "repair":
        print(f"  {bar}    ✎ repair round: {(event.detail or {}).get('checks')}")
    elif event.type == "error":
        print(f"  {bar}  ✗ {event.stage}: {(event.detail or {}).get('reason')}")


def config_file_path() -> Optional[str]:
    for candidate in ("quorum_config.yaml", "config/quorum_config.yaml"):
        path = _REPO_ROOT / candidate
        if path.exists():
            return str(path)
    return None


def print_result(label: str, result) -> None:
    meta = result.meta
    print()
    print("=" * 60)
    print(f"  {label}: {result.summary.title}")
    print("=" * 60)
    print(f"  overall_score:      {result.overall_score} (raw {meta.raw_judge_score})")
    print(f"  confidence:         {meta.confidence_level} ({meta.confidence_score})")
    print(f"  domain:             {meta.domain.domain.value}")
    print(f"  evidence_coverage:  {meta.evidence_coverage:.0%}")
    print(f"  verifier:           {meta.verifier_status}")
    print(f"  disagreement:       {meta.committee_disagreement.disagreement_note}")
    print(f"  bear / bull:        {result.bear.verdict} {result.bear.score} / "
          f"{result.bull.verdict} {result.bull.score}")
    for note in meta.calibration_notes:
        print(f"    · {note}")
    print("  recommendations:")
    for item in result.recommendations:
        print(f"    - {item}")
    print("=" * 60)


# =============================================================================
# Main
# =============================================================================

async def run_one(service: EvaluationService, name: str, grounded: bool) -> None:
    print()
    print("─" * 60)
    print(f"  {name}: 实时进度 / live progress")
    print("─" * 60)
    try:
        result = await service.evaluate(
            IDEAS[name],
            grounding=GROUNDING[name] if grounded else None,
            on_progress=print_progress,
        )
    except EvaluationRejected as e:
        print(json.dumps(e.to_payload(), ensure_ascii=False, indent=2))
        return
    except CommitteeError as e:
        logger.error(f"Evaluation failed: {e}")
        return
    print_result(name, result)


async def main() -> None:
    parser = argparse.ArgumentParser(description="Quorum E2E: committee evaluation")
    parser.add_argument("mode", choices=[*IDEAS, "all"])
    parser.add_argument("--grounded", action="store_true", help="附带示例依据数据 / attach sample grounding")
    args = parser.parse_args()

    service = EvaluationService(config_file=config_file_path())
    names = list(IDEAS) if args.mode == "all" else [args.mode]
    for name in names:
        await run_one(service, name, args.grounded)

    print()
    print(f"  LLM ledger: {json.dumps(service.router.ledger.to_dict(), ensure_ascii=False)}")


if __name__ == "__main__":
    asyncio.run(main())
