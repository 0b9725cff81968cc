# config.py
# =============================================================================
# LLM 配置加载与合并模块 / LLM config loading & merging module
#
# 职责 / Responsibilities:
#   - 定义模型端点配置的数据结构（ModelEndpointConfig）
#     / Define the model endpoint config structure (ModelEndpointConfig)
#   - 四层优先级：代码传入 > 配置文件 > 环境变量展开 > DEFAULT_MODEL_MAP
#     / Four layers: code > config file > ${ENV} expansion > DEFAULT_MODEL_MAP
#   - 解析角色备用模型（_fallback）与委员会参数（_committee）
#     / Resolve per-role fallback models (_fallback) and committee tunables (_committee)
#
# 委员会角色 / Committee roles:
#   bear, bull, judge, judge_fallback, verifier
# =============================================================================

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from quorum.primitives.models import CommitteeSettings

logger = logging.getLogger(__name__)


# =============================================================================
# 数据结构 / Data Structures
# =============================================================================


@dataclass
class ModelEndpointConfig:
    """单个模型端点的完整配置。 / Complete config for a single model endpoint.

    各 LLM 适配器通过 from_endpoint_config() 读取本配置创建实例。
    / Adapters instantiate via from_endpoint_config().
    """

    model_platform: str  # "openai" / "anthropic" / "deepseek" ...
    model_name: str

    api_key: Optional[str] = None
    url: Optional[str] = None

    # "chat_completions" - OpenAI Chat Completions 格式（默认） / OpenAI format (default)
    # "anthropic"        - Anthropic Messages API 格式 / Anthropic Messages API format
    api_mode: str = "chat_completions"

    # 委员会需要可复现的评分，默认低温 / low default temperature for repeatable scoring
    temperature: float = 0.2
    max_tokens: Optional[int] = 4096
    timeout: Optional[float] = None
    max_retries: int = 2
    # 要求 JSON 输出（Chat Completions 的 response_format） / request JSON output
    json_mode: bool = True

    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        "model",
        "model_name",
        "model_platform",
        "api_key",
        "url",
        "api_mode",
        "temperature",
        "max_tokens",
        "timeout",
        "max_retries",
        "json_mode",
    )
    _VALID_API_MODES = ("chat_completions", "anthropic")

    @classmethod
    def from_dict(cls, data: Any) -> ModelEndpointConfig:
        """从字典或模型名字符串构建配置。 / Build from a dict or a bare model name.

        简写格式时自动推断 model_platform。 / Platform is inferred for the shorthand.
        """
        if isinstance(data, str):
            return cls(model_platform=_infer_platform(data), model_name=data)

        model_name = data.get("model_name") or data.get("model", "")
        model_platform = data.get("model_platform") or _infer_platform(model_name)

        api_mode = data.get("api_mode") or _infer_api_mode(model_platform, data.get("url"))
        if api_mode not in cls._VALID_API_MODES:
            raise ValueError(
                f"Unsupported api_mode '{api_mode}'; "
                f"expected one of: {', '.join(cls._VALID_API_MODES)}"
            )

        timeout = data.get("timeout")
        return cls(
            model_platform=model_platform,
            model_name=model_name,
            api_key=data.get("api_key"),
            url=data.get("url"),
            api_mode=api_mode,
            temperature=float(data.get("temperature", 0.2)),
            max_tokens=data["max_tokens"] if "max_tokens" in data else 4096,
            timeout=float(timeout) if timeout is not None else None,
            max_retries=int(data.get("max_retries", 2)),
            json_mode=_as_bool(data.get("json_mode", True)),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


# =============================================================================
# 默认模型与平台推断 / Default models & platform inference
# =============================================================================

# 最低优先级层：未配置的角色使用这些模型 / Lowest layer for roles with no config
DEFAULT_MODEL_MAP: Dict[str, str] = {
    "bear": "gpt-4o-mini",
    "bull": "gpt-4o-mini",
    "judge": "gpt-4o",
    "judge_fallback": "gpt-4o-mini",
    "verifier": "gpt-4o-mini",
}

COMMITTEE_ROLES = list(DEFAULT_MODEL_MAP)

# 未单独配置 _fallback 时，所有角色回退到该角色的模型
# / Without an explicit _fallback entry every role falls back to this role's model
DEFAULT_FALLBACK_ROLE = "judge_fallback"

_PLATFORM_INFERENCE_RULES: List[tuple] = [
    (["claude"], "anthropic"),
    (["gpt-", "o1-", "o3-", "o4-", "chatgpt"], "openai"),
    (["gemini"], "google"),
    (["deepseek"], "deepseek"),
    (["qwen", "qwq"], "qwen"),
    (["llama", "meta-llama"], "ollama"),
]


def _infer_platform(model_name: str) -> str:
    """根据模型名称推断平台，未能推断时返回 "openai"。 / Infer platform, default "openai"."""
    name_lower = model_name.lower()
    for keywords, platform in _PLATFORM_INFERENCE_RULES:
        if any(kw in name_lower for kw in keywords):
            return platform
    logger.debug("Cannot infer platform from model name '%s'; using 'openai'", model_name)
    return "openai"


def _infer_api_mode(platform: str, url: Optional[str] = None) -> str:
    """anthropic 平台且无自定义 URL 时使用 Messages API，否则 Chat Completions。"""
    if (platform or "").lower() == "anthropic" and not url:
        return "anthropic"
    return "chat_completions"


# =============================================================================
# 配置加载器 / Config Loader
# =============================================================================


class LLMConfigLoader:
    """委员会 LLM 配置加载器。 / Committee LLM config loader.

    优先级（高→低） / Priority (high→low):
    1. 代码传入（llm_config 字典参数） / Code-level config dict
    2. 配置文件（quorum_config.yaml） / Config file
    3. 环境变量（通过 ${VAR} 在 YAML 中引用） / Env vars via ${VAR} in YAML
    4. DEFAULT_MODEL_MAP

    llm_config 字典格式 / Dict format:
    {
        "_default": {"api_key": "${OPENAI_API_KEY}", "temperature": 0.2},
        "judge": {"model_name": "claude-sonnet-4-20250514", "api_key": "sk-ant-xxx"},
        "bear": "gpt-4o-mini",            # 简写 / shorthand
        "_fallback": {"judge": "gpt-4o-mini"},
        "_committee": {"disagreement_sigma_threshold": 2.5},
    }
    """

    _CONFIG_SEARCH_PATHS = [
        "quorum_config.yaml",
        "quorum_config.yml",
        "config/quorum_config.yaml",
        "config/quorum_config.yml",
    ]

    _META_KEYS = {"_default", "_fallback", "_committee"}

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
        model_defaults: Optional[Dict[str, str]] = None,
    ):
        """初始化配置加载器。 / Initialize the loader.

        Args:
            llm_config: 代码传入的配置字典（最高优先级）。 / Code-level config (highest).
            config_file: 配置文件路径（不传则自动搜索）。 / Config path (auto-search if omitted).
            model_defaults: 替换 DEFAULT_MODEL_MAP 的最低层。 / Replaces the lowest layer.
        """
        self._code_config = llm_config or {}
        self._file_config: Dict[str, Any] = {}
        self._model_defaults = dict(
            DEFAULT_MODEL_MAP if model_defaults is None else model_defaults
        )
        self._load_config_file(config_file)

    def _load_config_file(self, config_file: Optional[str]) -> None:
        if config_file:
            path = Path(config_file)
            if path.exists():
                self._file_config = self._read_yaml(path)
                logger.info("Loaded LLM config file: %s", path)
            else:
                logger.warning("LLM config file not found: %s", path)
            return

        for search_path in self._CONFIG_SEARCH_PATHS:
            path = Path(search_path)
            if path.exists():
                self._file_config = self._read_yaml(path)
                logger.info("Discovered LLM config file: %s", path)
                return

        logger.debug("No LLM config file found; using code config and defaults")

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        """读取 YAML 文件并展开环境变量引用。 / Read YAML and expand env var refs."""
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            from quorum.llm.router import ConfigurationError

            raise ConfigurationError(f"LLM config file {path} must contain a mapping")
        return _expand_env_vars(raw)

    def resolve(self, role: str) -> ModelEndpointConfig:
        """解析指定角色的完整模型配置。 / Resolve the full model config for a role.

        合并顺序（后者覆盖前者） / Merge order (later wins):
        DEFAULT_MODEL_MAP → 文件 _default → 文件角色 → 代码 _default → 代码角色

        Raises:
            ConfigurationError: 合并后仍无 model_name。 / No model_name after merging.
        """
        from quorum.llm.router import ConfigurationError

        merged: Dict[str, Any] = {}
        default_model = self._model_defaults.get(role)
        if default_model:
            merged["model_name"] = default_model

        for source in (self._file_config, self._code_config):
            default = source.get("_default", {})
            if isinstance(default, dict):
                merged.update({k: v for k, v in default.items() if v is not None})
            _merge_role(merged, source.get(role))

        model_name = merged.get("model_name") or merged.get("model", "")
        if not model_name:
            hint = ""
            if role in COMMITTEE_ROLES:
                hint = (
                    f" '{role}' is a committee role; set it in llm_config, "
                    f"quorum_config.yaml or _default."
                )
            raise ConfigurationError(
                f"No LLM model configured for role '{role}': searched "
                f"llm_config['{role}'], the config file section '{role}' "
                f"and _default.{hint}"
            )
        merged["model_name"] = model_name
        merged.setdefault("model_platform", _infer_platform(model_name))
        return ModelEndpointConfig.from_dict(merged)

    def get_fallback_model(self, role: str) -> Optional[str]:
        """角色的备用模型名。代码配置优先于文件配置。

        / Fallback model name for a role; code config wins over the file.
        Without an explicit entry every role falls back to the judge_fallback model.
        """
        for source in (self._code_config, self._file_config):
            fallback = source.get("_fallback", {})
            if isinstance(fallback, dict) and role in fallback:
                return str(fallback[role])
        if role == DEFAULT_FALLBACK_ROLE:
            return None
        try:
            return self.resolve(DEFAULT_FALLBACK_ROLE).model_name
        except Exception as exc:
            logger.debug("No fallback model for role %s: %s", role, exc)
            return None

    def resolve_fallback(self, role: str) -> Optional[ModelEndpointConfig]:
        """角色的备用端点：沿用角色连接配置，替换模型名。

        / Fallback endpoint: the role's connection settings with the fallback model.
        An explicit fallback with another platform uses the judge_fallback endpoint.
        """
        model = self.get_fallback_model(role)
        if not model:
            return None
        primary = self.resolve(role)
        platform = _infer_platform(model)
        if platform != primary.model_platform and role != DEFAULT_FALLBACK_ROLE:
            base = self.resolve(DEFAULT_FALLBACK_ROLE)
            return replace(base, model_name=model, model_platform=platform)
        return replace(primary, model_name=model)

    def committee_settings(self) -> CommitteeSettings:
        """合并文件与代码中的 _committee 参数。 / Merge _committee tunables (code wins)."""
        data: Dict[str, Any] = {}
        for source in (self._file_config, self._code_config):
            section = source.get("_committee", {})
            if isinstance(section, dict):
                data.update(section)
        return CommitteeSettings.from_dict(data)

    def all_configured_roles(self) -> List[str]:
        """所有角色名（不含 _ 开头的元配置键）。 / All role names, meta keys excluded."""
        roles = set(self._model_defaults)
        for cfg in (self._code_config, self._file_config):
            roles.update(k for k in cfg.keys() if not k.startswith("_"))
        return sorted(roles)

    def resolve_all(self, roles: Optional[List[str]] = None) -> Dict[str, ModelEndpointConfig]:
        if roles is None:
            roles = self.all_configured_roles()
        result = {}
        for role in roles:
            try:
                result[role] = self.resolve(role)
            except Exception as exc:
                logger.debug("Skipping unresolvable role %s in summary: %s", role, exc)
        return result

    def summary(self) -> Dict[str, Dict[str, str]]:
        """配置摘要（隐藏 API Key），用于日志。 / Config summary with masked keys, for logging."""
        result = {}
        for role, cfg in self.resolve_all().items():
            result[role] = {
                "platform": cfg.model_platform,
                "model": cfg.model_name,
                "fallback": self.get_fallback_model(role) or "(none)",
                "url": cfg.url or "(auto)",
                "api_key": _mask_key(cfg.api_key),
                "temperature": str(cfg.temperature),
            }
        return result


# =============================================================================
# 工具函数 / Utility Functions
# =============================================================================


def _merge_role(merged: Dict[str, Any], role_config: Any) -> None:
    if isinstance(role_config, str):
        merged["model_name"] = role_config
        merged["model_platform"] = _infer_platform(role_config)
    elif isinstance(role_config, dict):
        if "model_name" in role_config or "model" in role_config:
            # 换模型时平台随之重新推断 / a new model re-infers its platform
            merged.pop("model_platform", None)
            merged.pop("model", None)
        merged.update({k: v for k, v in role_config.items() if v is not None})


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


_ENV_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(obj: Any) -> Any:
    """递归展开 ${ENV_VAR} 引用。 / Recursively expand ${ENV_VAR} refs.

    - ${VAR_NAME}          → os.environ["VAR_NAME"]
    - ${VAR_NAME:-default} → os.environ.get("VAR_NAME", "default")
    """
    if isinstance(obj, str):

        def _replace(match):
            var_expr = match.group(1)
            if ":-" in var_expr:
                var_name, default = var_expr.split(":-", 1)
                return os.environ.get(var_name.strip(), default.strip())
            return os.environ.get(var_expr.strip(), match.group(0))

        return _ENV_RE.sub(_replace, obj)

    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    return obj


def _mask_key(key: Optional[str]) -> str:
    """遮蔽 API Key，仅显示前 8 位和后 4 位。 / Mask API key, first 8 and last 4 chars."""
    if not key:
        return "(env)"
    if len(key) <= 12:
        return key[:3] + "***"
    return key[:8] + "..." + key[-4:]
