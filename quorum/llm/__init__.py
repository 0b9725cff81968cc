# llm/__init__.py
# 模型路由、调用账本、LLM 配置管理与适配器 / Model routing, call ledger, LLM config & adapters

from quorum.llm.anthropic_adapter import AnthropicAdapter
from quorum.llm.chat_completions_adapter import ChatCompletionsAdapter
from quorum.llm.config import (
    DEFAULT_MODEL_MAP,
    LLMConfigLoader,
    ModelEndpointConfig,
)
from quorum.llm.router import (
    CallLedger,
    ConfigurationError,
    ModelRouter,
)

__all__ = [
    "AnthropicAdapter",
    "CallLedger",
    "ChatCompletionsAdapter",
    "ConfigurationError",
    "DEFAULT_MODEL_MAP",
    "LLMConfigLoader",
    "ModelEndpointConfig",
    "ModelRouter",
]
