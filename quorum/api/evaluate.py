# evaluate.py
# =============================================================================
# 公共 API: Quorum 委员会评估入口。
#
# EvaluationService 在进程内持有路由器、委员会参数与评估缓存，
# 每次 evaluate() 组装一个 CommitteeOrchestrator 执行评估。
# evaluate_idea() 为一次性调用的便捷函数。
# =============================================================================

"""公共 API: Quorum 委员会评估入口。"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from quorum.agents.analyst import RoleAnalyst
from quorum.agents.judge import JudgeAgent
from quorum.agents.reflector import ReflectionAgent
from quorum.engine.cache import EvaluationCache
from quorum.engine.committee import CommitteeOrchestrator, ProgressCallback
from quorum.engine.verifier import QualityVerifier
from quorum.llm.router import ModelRouter
from quorum.primitives.models import (
    CommitteeResult,
    CommitteeRole,
    CommitteeSettings,
    GroundingSnapshot,
    IdeaSubmission,
    PredictionReflection,
    PredictionReflectionInput,
)

logger = logging.getLogger(__name__)

REPAIR_ROLE = "verifier"
REFLECTION_ROLE = "judge"


def make_llm_caller(router: ModelRouter, role: str, fallback: bool = False):
    """创建指定角色的 LLM 调用函数。

    返回 async def(*, system_prompt, user_prompt) -> str 签名的协程函数。
    fallback=True 时调用该角色的备用模型。
    所有 adapter 均暴露 async call(system_prompt, user_message) -> str。
    """
    label = f"{role}:fallback" if fallback else role

    async def caller(*, system_prompt: str = "", user_prompt: str = "") -> str:
        router.record_attempt(label)
        logger.info(f"[{label}] LLM call #{router.ledger.total_attempts}")
        if fallback:
            adapter = router.get_fallback_backend(role)
            if adapter is None:
                raise RuntimeError(f"No fallback model configured for role {role}")
        else:
            adapter = router.get_model_backend(role)
        content = await adapter.call(system_prompt, user_prompt)
        router.record_call(label, fallback=fallback)
        return content

    return caller


class EvaluationService:
    """进程级评估服务。 / Process-lifetime evaluation service.

    Holds the model router, committee settings and the evaluation cache,
    all read once at construction and passed by reference.
    """

    def __init__(
        self,
        router: Optional[ModelRouter] = None,
        settings: Optional[CommitteeSettings] = None,
        cache: Optional[EvaluationCache] = None,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
    ):
        self._router = router or ModelRouter(llm_config=llm_config, config_file=config_file)
        self._settings = settings or self._router.config_loader.committee_settings()
        self._cache = cache or EvaluationCache(
            ttl=self._settings.cache_ttl,
            max_entries=self._settings.cache_max_entries,
        )
        self._verifier = QualityVerifier(self._settings)

    @property
    def router(self) -> ModelRouter:
        return self._router

    @property
    def settings(self) -> CommitteeSettings:
        return self._settings

    @property
    def cache(self) -> EvaluationCache:
        return self._cache

    def build_orchestrator(
        self, on_progress: Optional[ProgressCallback] = None
    ) -> CommitteeOrchestrator:
        """按当前路由配置组装委员会。 / Assemble the committee from the router."""
        router = self._router
        settings = self._settings

        def analyst(role: CommitteeRole) -> RoleAnalyst:
            fallback_model = router.get_fallback_model(role.value)
            return RoleAnalyst(
                role=role,
                llm_caller=make_llm_caller(router, role.value),
                fallback_caller=(
                    make_llm_caller(router, role.value, fallback=True)
                    if fallback_model else None
                ),
                timeout=settings.role_timeout,
                model=router.get_model(role.value),
                fallback_model=fallback_model or "",
            )

        judge_fallback = router.get_fallback_model("judge")
        judge = JudgeAgent(
            llm_caller=make_llm_caller(router, "judge"),
            fallback_caller=(
                make_llm_caller(router, "judge", fallback=True) if judge_fallback else None
            ),
            repair_caller=make_llm_caller(router, REPAIR_ROLE),
            timeout=settings.judge_timeout,
            model=router.get_model("judge"),
            fallback_model=judge_fallback or "",
            repair_model=router.get_model(REPAIR_ROLE),
        )
        return CommitteeOrchestrator(
            bear=analyst(CommitteeRole.BEAR),
            bull=analyst(CommitteeRole.BULL),
            judge=judge,
            settings=settings,
            verifier=self._verifier,
            on_progress=on_progress,
        )

    async def evaluate(
        self,
        submission: Union[IdeaSubmission, Dict[str, Any]],
        grounding: Optional[GroundingSnapshot] = None,
        tag: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        use_cache: bool = True,
    ) -> CommitteeResult:
        """评估一个想法。相同输入（+ tag）在 TTL 内返回同一结果。

        Raises:
            InvalidSubmissionError: 提交内容缺少 description。
            EvaluationRejected: 质量门未通过。
            CommitteeError: 角色失败或超时。
        """
        if not isinstance(submission, IdeaSubmission):
            submission = IdeaSubmission.from_dict(submission)

        async def compute() -> CommitteeResult:
            return await self.build_orchestrator(on_progress).evaluate(submission, grounding)

        if not use_cache:
            return await compute()
        payload = {
            "submission": submission.canonical(),
            "grounding": grounding.canonical() if grounding else None,
        }
        return await self._cache.get_or_compute("evaluation", payload, compute, tag=tag)

    async def reflect(
        self,
        reflection_input: Union[PredictionReflectionInput, Dict[str, Any]],
    ) -> PredictionReflection:
        """复盘一个已结算的预测，按 insight_id 作为 tag 缓存。"""
        if not isinstance(reflection_input, PredictionReflectionInput):
            reflection_input = PredictionReflectionInput.from_dict(reflection_input)

        agent = ReflectionAgent(
            llm_caller=make_llm_caller(self._router, REFLECTION_ROLE),
            model=self._router.get_model(REFLECTION_ROLE),
        )
        return await self._cache.get_or_compute(
            "reflection",
            reflection_input.canonical(),
            lambda: agent.reflect(reflection_input),
            tag=reflection_input.insight_id,
        )


async def evaluate_idea(
    submission: Union[IdeaSubmission, Dict[str, Any]],
    grounding: Optional[GroundingSnapshot] = None,
    llm_config: Optional[Dict[str, Any]] = None,
    config_file: Optional[str] = None,
    tag: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> CommitteeResult:
    """一键评估。

    参数：
        submission: IdeaSubmission 或其字典形式（camelCase / snake_case 均可）
        grounding: 可选的外部数据快照（市场、代币安全、竞品、搜索）
        llm_config: LLM 模型配置（最高优先级），格式参见 LLMConfigLoader
        config_file: 配置文件路径（不传则自动搜索 quorum_config.yaml）
        tag: 缓存键附加标签
        on_progress: 进度回调（同步或异步），接收 EvaluationEvent

    返回：
        CommitteeResult；质量门未通过时抛出 EvaluationRejected。

    每次调用都会新建路由器与缓存；常驻进程应复用一个 EvaluationService。
    """
    service = EvaluationService(llm_config=llm_config, config_file=config_file)
    return await service.evaluate(
        submission, grounding=grounding, tag=tag, on_progress=on_progress
    )
