# anthropic_adapter.py
# =============================================================================
# Anthropic Messages API 适配器
#
# 职责：
#   - 将委员会的 (system_prompt, user_message) 调用转换为 Messages API 请求
#   - JSON 模式下以 "{" 预填 assistant 回复，保证输出从 JSON 对象开始
#   - 对传输错误与 429 / 5xx / 529 做指数退避重试；其他 4xx 立即失败
#
# 请求格式：
#   {"model": "...", "max_tokens": 4096, "system": "...",
#    "messages": [{"role": "user", "content": "..."}]}
#   -> response["content"][i]["text"]（type == "text"）
#
# 认证方式：x-api-key + anthropic-version
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

import httpx

from quorum.llm.chat_completions_adapter import RETRYABLE_STATUS

logger = logging.getLogger(__name__)

_DEFAULT_ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
_ANTHROPIC_VERSION = "2023-06-01"

# 529: Anthropic 过载 / Anthropic overloaded
_RETRYABLE = RETRYABLE_STATUS | {529}

_JSON_PREFILL = "{"


class AnthropicAdapter:
    """Anthropic Messages API 适配器（httpx 异步直连）。"""

    def __init__(
        self,
        api_key: str,
        model: str,
        url: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        max_retries: int = 2,
        json_mode: bool = True,
        backoff_base: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._endpoint = self._resolve_endpoint(url)
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
        """调用 Messages API 并返回文本响应。

        Raises:
            httpx.HTTPStatusError: 不可重试的 HTTP 错误。
            RuntimeError: 重试耗尽。
        """
        request_body = self._build_request(system_prompt, user_message)
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": _ANTHROPIC_VERSION,
        }

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
                    text = self._extract_text(response.json())
                    if self._json_mode and not text.lstrip().startswith(_JSON_PREFILL):
                        text = _JSON_PREFILL + text
                    return text

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status not in _RETRYABLE:
                    logger.error(
                        "Anthropic request rejected (HTTP %d): %s",
                        status,
                        e.response.text[:200],
                    )
                    raise
                last_error = e
                logger.warning(
                    "Anthropic HTTP %d, attempt %d/%d: %s",
                    status,
                    attempt + 1,
                    self._max_retries + 1,
                    e.response.text[:200],
                )
            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Anthropic transport error, attempt %d/%d: %s",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                )

        raise RuntimeError(
            f"Anthropic Messages call failed after {self._max_retries + 1} attempts: "
            f"{last_error}"
        )

    @staticmethod
    def _resolve_endpoint(url: Optional[str]) -> str:
        """空 url 使用官方端点；路径不含 /messages 时自动追加。"""
        if not url:
            return _DEFAULT_ANTHROPIC_URL
        parsed = urlparse(url)
        path = parsed.path
        if "/messages" not in path:
            path = path.rstrip("/") + "/messages"
        return urlunparse(parsed._replace(path=path))

    def _build_request(self, system_prompt: str, user_message: str) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = [{"role": "user", "content": user_message}]
        if self._json_mode:
            messages.append({"role": "assistant", "content": _JSON_PREFILL})

        body: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": messages,
            "temperature": self._temperature,
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    @staticmethod
    def _extract_text(response_data: Dict[str, Any]) -> str:
        """拼接所有 type == "text" 的内容块。"""
        content = response_data.get("content", [])
        if isinstance(content, list):
            texts = [
                block.get("text", "")
                for block in content
                if isinstance(block, dict) and block.get("type") == "text"
            ]
            if texts:
                return "".join(texts)

        logger.warning(
            "No text content in Anthropic response: %s",
            json.dumps(response_data, ensure_ascii=False)[:300],
        )
        return ""

    @classmethod
    def from_endpoint_config(cls, config) -> AnthropicAdapter:
        """从 ModelEndpointConfig 创建适配器；api_key 缺失时读取 ANTHROPIC_API_KEY。

        Raises:
            ValueError: 没有可用的 api_key。
        """
        api_key = config.api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError(
                "Anthropic mode needs an api_key; set it in llm_config "
                "or the ANTHROPIC_API_KEY environment variable."
            )
        return cls(
            api_key=api_key,
            model=config.model_name,
            url=config.url,
            temperature=config.temperature,
            max_tokens=config.max_tokens or 4096,
            timeout=config.timeout or 60.0,
            max_retries=config.max_retries,
            json_mode=config.json_mode,
        )
