# chat_completions_adapter.py
# =============================================================================
# OpenAI Chat Completions API 适配器
#
# 职责：
#   - 将委员会的 (system_prompt, user_message) 调用转换为
#     Chat Completions 请求，可选 JSON 输出模式（response_format）
#   - 对传输错误与 429 / 5xx 做指数退避重试；其他 4xx 立即失败
#   - 兼容 OpenAI 与各类 OpenAI 兼容端点（DeepSeek、Qwen、Azure 等）
#
# URL 兼容性：
#   1. 基础 URL：https://api.openai.com/v1 -> 自动追加 /chat/completions
#   2. 完整路径：https://xxx/openai/chat/completions -> 直接使用
#
# 认证方式：
#   - 标准端点：Authorization: Bearer <key>
#   - Azure 端点：api-key: <key>（自动检测 Azure 域名）
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

import httpx

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"

_AZURE_DOMAIN_SUFFIXES = (
    "cognitiveservices.azure.com",
    "openai.azure.com",
    "services.ai.azure.com",
)

# 可重试的 HTTP 状态码 / retryable HTTP status codes
RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})


class ChatCompletionsAdapter:
    """OpenAI Chat Completions API 适配器（httpx 异步直连）。"""

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        timeout: float = 60.0,
        max_retries: int = 2,
        json_mode: bool = True,
        backoff_base: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """初始化适配器。

        Args:
            url: 基础 URL 或完整 /chat/completions URL。
            api_key: API 密钥。
            model: 模型名称（如 "gpt-4o"）。
            json_mode: 为 True 时请求 response_format={"type": "json_object"}。
            backoff_base: 指数退避基数（秒），第 n 次重试等待 base * 2**n。
            transport: 可选的 httpx transport（测试时注入 MockTransport）。
        """
        self._endpoint = self._resolve_endpoint(url)
        self._is_azure = self._detect_azure(url)
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_retries = max_retries
        self._json_mode = json_mode
        self._backoff_base = backoff_base
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def call(self, system_prompt: str, user_message: str) -> str:
        """调用 Chat Completions API 并返回文本响应。

        Raises:
            httpx.HTTPStatusError: 不可重试的 HTTP 错误。
            RuntimeError: 重试耗尽。
        """
        request_body = self._build_request(system_prompt, user_message)
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self._is_azure:
            headers["api-key"] = self._api_key
        else:
            headers["Authorization"] = f"Bearer {self._api_key}"

        last_error: Optional[Exception] = None
        for attempt in range(self._max_retries + 1):
            if attempt:
                await asyncio.sleep(self._backoff_base * (2 ** (attempt - 1)))
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.post(
                        self._endpoint, headers=headers, json=request_body
                    )
                    response.raise_for_status()
                    return self._extract_text(response.json())

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status not in RETRYABLE_STATUS:
                    logger.error(
                        "Chat Completions request rejected (HTTP %d): %s",
                        status,
                        e.response.text[:200],
                    )
                    raise
                last_error = e
                logger.warning(
                    "Chat Completions HTTP %d, attempt %d/%d: %s",
                    status,
                    attempt + 1,
                    self._max_retries + 1,
                    e.response.text[:200],
                )
            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Chat Completions transport error, attempt %d/%d: %s",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                )

        raise RuntimeError(
            f"Chat Completions call failed after {self._max_retries + 1} attempts: "
            f"{last_error}"
        )

    # =========================================================================
    # URL 与认证检测
    # =========================================================================

    @staticmethod
    def _resolve_endpoint(url: str) -> str:
        """路径中不含 /chat/completions 时在末尾追加。"""
        parsed = urlparse(url)
        path = parsed.path
        if "/chat/completions" not in path:
            path = path.rstrip("/") + "/chat/completions"
        return urlunparse(parsed._replace(path=path))

    @staticmethod
    def _detect_azure(url: str) -> bool:
        hostname = urlparse(url).hostname or ""
        return any(hostname.endswith(d) for d in _AZURE_DOMAIN_SUFFIXES)

    # =========================================================================
    # 请求构建与响应解析
    # =========================================================================

    def _build_request(self, system_prompt: str, user_message: str) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_message})

        body: Dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
        }
        if self._max_tokens is not None:
            body["max_tokens"] = self._max_tokens
        if self._json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    @staticmethod
    def _extract_text(response_data: Dict[str, Any]) -> str:
        """response["choices"][0]["message"]["content"]"""
        choices = response_data.get("choices", [])
        if choices:
            content = choices[0].get("message", {}).get("content")
            if content is not None:
                return content

        logger.warning(
            "No text content in Chat Completions response: %s",
            json.dumps(response_data, ensure_ascii=False)[:300],
        )
        return ""

    @classmethod
    def from_endpoint_config(cls, config) -> ChatCompletionsAdapter:
        """从 ModelEndpointConfig 创建适配器实例。

        openai 平台未配置 url 时使用官方地址；api_key 缺失时读取 OPENAI_API_KEY。

        Raises:
            ValueError: 缺少 url 或 api_key。
        """
        url = config.url
        if not url and config.model_platform == "openai":
            url = DEFAULT_OPENAI_URL
        if not url:
            raise ValueError(
                f"Chat Completions mode needs an explicit url for platform "
                f"'{config.model_platform}'; set url in llm_config."
            )
        api_key = config.api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(
                "Chat Completions mode needs an api_key; set it in llm_config "
                "or the OPENAI_API_KEY environment variable."
            )

        return cls(
            url=url,
            api_key=api_key,
            model=config.model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout or 60.0,
            max_retries=config.max_retries,
            json_mode=config.json_mode,
        )
