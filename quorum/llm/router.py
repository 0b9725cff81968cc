# router.py
# =============================================================================
# LLM 模型路由与调用账本模块
#
# 职责：
#   - 根据委员会角色选择 LLM 适配器（ChatCompletions / Anthropic）
#   - 为每个角色提供备用模型适配器（主模型失败时的单次重试）
#   - 记录每个角色的调用尝试与成功次数（成本审计）
#
# 配置优先级（高→低）：
#   1. 代码传入 llm_config 字典
#   2. 配置文件 quorum_config.yaml
#   3. 环境变量（通过 ${VAR} 在 YAML 中引用）
#   4. DEFAULT_MODEL_MAP
#
# 路由器在进程内构造一次并按引用传递；配置摘要只在构造时输出一次。
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from quorum.llm.config import LLMConfigLoader, ModelEndpointConfig

logger = logging.getLogger(__name__)


# =============================================================================
# 异常
# =============================================================================


class ConfigurationError(Exception):
    """LLM 配置缺失或不完整时抛出的异常。"""
    pass


# =============================================================================
# 调用账本
# =============================================================================


@dataclass
class CallLedger:
    """LLM 调用账本。

    attempts 包含失败的请求（超时、provider 异常），calls 只计成功返回。
    fallback_calls 统计备用模型承接的调用。
    """

    total_calls: int = 0
    total_attempts: int = 0
    fallback_calls: int = 0
    calls_by_role: Dict[str, int] = field(default_factory=dict)
    attempts_by_role: Dict[str, int] = field(default_factory=dict)

    def record_attempt(self, role: str) -> None:
        """记录一次调用尝试（无论成功或失败），在发起请求前调用。"""
        self.total_attempts += 1
        self.attempts_by_role[role] = self.attempts_by_role.get(role, 0) + 1

    def record_call(self, role: str, fallback: bool = False) -> None:
        """记录一次调用成功。"""
        self.total_calls += 1
        self.calls_by_role[role] = self.calls_by_role.get(role, 0) + 1
        if fallback:
            self.fallback_calls += 1

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "total_attempts": self.total_attempts,
            "fallback_calls": self.fallback_calls,
            "calls_by_role": dict(self.calls_by_role),
            "attempts_by_role": dict(self.attempts_by_role),
        }


# =============================================================================
# 模型路由器
# =============================================================================


class ModelRouter:
    """模型路由器: 根据角色选择适配器，提供备用模型，记录调用。

    - 通过 LLMConfigLoader 解析四层优先级配置
    - 根据 api_mode 创建对应适配器，统一 async call() 接口
    - 主模型与备用模型适配器分别按角色缓存
    """

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
        config_loader: Optional[LLMConfigLoader] = None,
    ) -> None:
        """初始化路由器。

        Args:
            llm_config: 用户自定义模型配置字典（最高优先级），格式参见 LLMConfigLoader。
                - 简写: {"bear": "gpt-4o-mini", "judge": "claude-sonnet-4-20250514"}
                - 完整: {"judge": {"model_platform": "openai", "model_name": "gpt-4o",
                                   "api_key": "sk-xxx"}}
                - 备用: {"_fallback": {"judge": "gpt-4o-mini"}}
            config_file: 配置文件路径（可选，不传则自动搜索）。
            config_loader: 直接传入已构建的加载器（优先于前两个参数）。
        """
        self._config_loader = config_loader or LLMConfigLoader(
            llm_config=llm_config, config_file=config_file
        )
        self._ledger = CallLedger()
        self._model_cache: Dict[str, Any] = {}

        # 构造时输出一次配置摘要（隐藏 API Key）
        for role, info in self._config_loader.summary().items():
            logger.info(
                "Model route: %s -> %s/%s (fallback=%s, url=%s, key=%s)",
                role,
                info["platform"],
                info["model"],
                info["fallback"],
                info["url"],
                info["api_key"],
            )

    @property
    def ledger(self) -> CallLedger:
        return self._ledger

    @property
    def config_loader(self) -> LLMConfigLoader:
        return self._config_loader

    # =========================================================================
    # 模型选择
    # =========================================================================

    def get_model(self, role: str) -> str:
        """角色对应的模型名称。配置缺失时抛出 ConfigurationError。"""
        return self._config_loader.resolve(role).model_name

    def get_fallback_model(self, role: str) -> Optional[str]:
        """角色的备用模型名称；无备用时返回 None。"""
        return self._config_loader.get_fallback_model(role)

    def get_endpoint_config(self, role: str) -> ModelEndpointConfig:
        return self._config_loader.resolve(role)

    # =========================================================================
    # 适配器管理
    # =========================================================================

    def get_model_backend(self, role: str) -> Any:
        """获取角色主模型的适配器实例（带缓存）。

        所有适配器均暴露统一接口：async call(system_prompt, user_message) -> str

        Raises:
            ConfigurationError: 角色配置缺失或不完整。
        """
        if role in self._model_cache:
            return self._model_cache[role]
        config = self._config_loader.resolve(role)
        return self._cache_adapter(role, role, config)

    def get_fallback_backend(self, role: str) -> Optional[Any]:
        """获取角色备用模型的适配器实例；无备用模型时返回 None。"""
        cache_key = f"_fallback_{role}"
        if cache_key in self._model_cache:
            return self._model_cache[cache_key]
        config = self._config_loader.resolve_fallback(role)
        if config is None:
            return None
        return self._cache_adapter(cache_key, role, config)

    def _cache_adapter(self, cache_key: str, role: str, config: ModelEndpointConfig) -> Any:
        adapter = self._create_adapter(config)
        self._model_cache[cache_key] = adapter
        logger.info(
            "LLM adapter created: role=%s, api_mode=%s, model=%s, url=%s",
            role,
            config.api_mode,
            config.model_name,
            config.url or "(default)",
        )
        return adapter

    @staticmethod
    def _create_adapter(config: ModelEndpointConfig) -> Any:
        """根据 api_mode 创建对应的 LLM 适配器。"""
        if config.api_mode == "chat_completions":
            from quorum.llm.chat_completions_adapter import ChatCompletionsAdapter
            return ChatCompletionsAdapter.from_endpoint_config(config)

        if config.api_mode == "anthropic":
            from quorum.llm.anthropic_adapter import AnthropicAdapter
            return AnthropicAdapter.from_endpoint_config(config)

        raise ConfigurationError(
            f"Unsupported api_mode '{config.api_mode}'; "
            f"expected chat_completions or anthropic"
        )

    def clear_model_cache(self) -> None:
        """清除所有缓存的适配器。"""
        self._model_cache.clear()

    # =========================================================================
    # 调用记录
    # =========================================================================

    def record_attempt(self, role: str) -> None:
        self._ledger.record_attempt(role)

    def record_call(self, role: str, fallback: bool = False) -> None:
        self._ledger.record_call(role, fallback=fallback)
