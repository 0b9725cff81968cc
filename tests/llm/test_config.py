# test_config.py
# =============================================================================
# LLMConfigLoader 单元测试 / LLMConfigLoader unit tests
# - 优先级合并 / Priority merging
# - 环境变量展开 / Env var expansion
# - 备用模型解析 / Fallback model resolution
# - 委员会参数 / Committee tunables
# =============================================================================

import pytest

from quorum.llm.config import (
    DEFAULT_MODEL_MAP,
    LLMConfigLoader,
    ModelEndpointConfig,
    _expand_env_vars,
    _infer_platform,
    _mask_key,
)
from quorum.llm.router import ConfigurationError


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """避免自动发现仓库里的配置文件。 / Keep auto-discovery away from real config files."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestModelEndpointConfig:
    def test_shorthand_infers_platform(self):
        config = ModelEndpointConfig.from_dict("claude-sonnet-4-20250514")
        assert config.model_platform == "anthropic"
        assert config.model_name == "claude-sonnet-4-20250514"

    def test_anthropic_without_url_uses_messages_api(self):
        config = ModelEndpointConfig.from_dict({"model": "claude-3-5-haiku"})
        assert config.api_mode == "anthropic"

    def test_anthropic_behind_proxy_uses_chat_completions(self):
        config = ModelEndpointConfig.from_dict(
            {"model": "claude-3-5-haiku", "url": "https://openrouter.ai/api/v1"}
        )
        assert config.api_mode == "chat_completions"

    def test_unknown_api_mode(self):
        with pytest.raises(ValueError, match="api_mode"):
            ModelEndpointConfig.from_dict({"model": "gpt-4o", "api_mode": "bedrock"})

    def test_extra_keys_are_kept(self):
        config = ModelEndpointConfig.from_dict({"model": "gpt-4o", "seed": 7, "json_mode": "false"})
        assert config.extra == {"seed": 7}
        assert config.json_mode is False

    @pytest.mark.parametrize("name, platform", [
        ("gpt-4o-mini", "openai"),
        ("deepseek-chat", "deepseek"),
        ("qwen-max", "qwen"),
        ("gemini-2.0-flash", "google"),
        ("mystery-model", "openai"),
    ])
    def test_infer_platform(self, name, platform):
        assert _infer_platform(name) == platform


class TestResolve:
    def test_defaults(self):
        loader = LLMConfigLoader()
        assert loader.resolve("judge").model_name == DEFAULT_MODEL_MAP["judge"]
        assert loader.resolve("bear").temperature == 0.2

    def test_code_overrides_file(self, isolated_cwd):
        (isolated_cwd / "quorum_config.yaml").write_text(
            "_default:\n  api_key: file-key\n  temperature: 0.5\n"
            "judge:\n  model_name: gpt-4o\n",
            encoding="utf-8",
        )
        loader = LLMConfigLoader(llm_config={"judge": "claude-sonnet-4-20250514"})
        config = loader.resolve("judge")

        assert config.model_name == "claude-sonnet-4-20250514"
        assert config.model_platform == "anthropic"
        assert config.api_key == "file-key"
        assert config.temperature == 0.5

    def test_explicit_config_file(self, isolated_cwd):
        path = isolated_cwd / "custom.yml"
        path.write_text("bear: deepseek-chat\n", encoding="utf-8")
        config = LLMConfigLoader(config_file=str(path)).resolve("bear")
        assert config.model_platform == "deepseek"

    def test_env_expansion_in_file(self, isolated_cwd, monkeypatch):
        monkeypatch.setenv("QUORUM_TEST_KEY", "sk-from-env")
        (isolated_cwd / "quorum_config.yaml").write_text(
            "_default:\n  api_key: ${QUORUM_TEST_KEY}\n  url: ${QUORUM_TEST_URL:-https://llm.local/v1}\n",
            encoding="utf-8",
        )
        config = LLMConfigLoader().resolve("bull")
        assert config.api_key == "sk-from-env"
        assert config.url == "https://llm.local/v1"

    def test_non_mapping_file(self, isolated_cwd):
        (isolated_cwd / "quorum_config.yaml").write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            LLMConfigLoader()

    def test_unknown_role_without_default(self):
        with pytest.raises(ConfigurationError, match="scout"):
            LLMConfigLoader().resolve("scout")

    def test_default_model_applies_to_any_role(self):
        loader = LLMConfigLoader(llm_config={"_default": {"model_name": "gpt-4.1"}})
        assert loader.resolve("scout").model_name == "gpt-4.1"


class TestFallback:
    def test_every_role_falls_back_to_judge_fallback(self):
        loader = LLMConfigLoader(llm_config={"judge_fallback": "gpt-4.1-mini"})
        assert loader.get_fallback_model("bear") == "gpt-4.1-mini"
        assert loader.get_fallback_model("judge") == "gpt-4.1-mini"
        assert loader.get_fallback_model("judge_fallback") is None

    def test_explicit_fallback_wins(self):
        loader = LLMConfigLoader(llm_config={"_fallback": {"judge": "gpt-4o-mini"}})
        assert loader.get_fallback_model("judge") == "gpt-4o-mini"

    def test_fallback_keeps_role_connection(self):
        loader = LLMConfigLoader(llm_config={
            "bear": {"model_name": "gpt-4o", "api_key": "bear-key", "url": "https://gw/v1"},
            "_fallback": {"bear": "gpt-4o-mini"},
        })
        config = loader.resolve_fallback("bear")
        assert config.model_name == "gpt-4o-mini"
        assert config.api_key == "bear-key"
        assert config.url == "https://gw/v1"

    def test_cross_platform_fallback_uses_fallback_endpoint(self):
        loader = LLMConfigLoader(llm_config={
            "judge": {"model_name": "claude-sonnet-4-20250514", "api_key": "ant-key"},
            "judge_fallback": {"model_name": "gpt-4o-mini", "api_key": "oai-key"},
        })
        config = loader.resolve_fallback("judge")
        assert config.model_name == "gpt-4o-mini"
        assert config.api_key == "oai-key"
        assert config.api_mode == "chat_completions"


class TestCommitteeSettings:
    def test_code_overrides_file(self, isolated_cwd):
        (isolated_cwd / "quorum_config.yaml").write_text(
            "_committee:\n  disagreement_sigma_threshold: 3\n  cache_ttl: 60\n",
            encoding="utf-8",
        )
        settings = LLMConfigLoader(
            llm_config={"_committee": {"cache_ttl": 5}}
        ).committee_settings()
        assert settings.disagreement_sigma_threshold == 3.0
        assert settings.cache_ttl == 5.0

    def test_unknown_key(self):
        loader = LLMConfigLoader(llm_config={"_committee": {"sigma": 2}})
        with pytest.raises(ValueError, match="sigma"):
            loader.committee_settings()

    def test_invalid_pivot(self):
        loader = LLMConfigLoader(llm_config={"_committee": {"calibration_pivot": 2}})
        with pytest.raises(ValueError):
            loader.committee_settings()


class TestSummaryAndHelpers:
    def test_summary_masks_keys(self):
        loader = LLMConfigLoader(llm_config={"_default": {"api_key": "sk-1234567890abcdef"}})
        summary = loader.summary()
        assert set(DEFAULT_MODEL_MAP) <= set(summary)
        assert summary["judge"]["api_key"] == "sk-12345...cdef"
        assert summary["judge"]["fallback"] == DEFAULT_MODEL_MAP["judge_fallback"]

    def test_configured_roles_include_extra_roles(self):
        loader = LLMConfigLoader(llm_config={"scout": "gpt-4.1", "_fallback": {"scout": "gpt-4o"}})
        roles = loader.all_configured_roles()
        assert "scout" in roles
        assert set(DEFAULT_MODEL_MAP) <= set(roles)
        assert not any(role.startswith("_") for role in roles)

    def test_resolve_all_skips_unresolvable_roles(self):
        loader = LLMConfigLoader(llm_config={"scout": {"temperature": 0.5}})
        resolved = loader.resolve_all()
        assert "scout" not in resolved
        assert resolved["bear"].model_name == DEFAULT_MODEL_MAP["bear"]
        assert "scout" not in loader.summary()
        assert set(loader.resolve_all(["judge"])) == {"judge"}

    def test_mask_short_key(self):
        assert _mask_key("short") == "sho***"
        assert _mask_key(None) == "(env)"

    def test_expand_nested(self, monkeypatch):
        monkeypatch.setenv("QUORUM_A", "1")
        assert _expand_env_vars({"x": ["${QUORUM_A}", "${QUORUM_MISSING}"]}) == {
            "x": ["1", "${QUORUM_MISSING}"]
        }
