"""
Tests for configuration module.
"""

import os
from unittest.mock import patch

import pytest

from code_analysis_agent.config import LLMConfig, Settings
from code_analysis_agent.llm.anthropic import AnthropicLLM
from code_analysis_agent.llm.factory import create_llm
from code_analysis_agent.llm.openai import OpenAILLM


def test_settings_default_values():
    """Test that settings have sensible defaults."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.app_name == "code-analysis-agent"
        assert settings.default_provider == "anthropic"
        assert settings.max_tokens == 4096
        assert settings.temperature is None
        assert settings.max_retries == 0
        assert settings.max_iterations == 30
        assert settings.compaction_ratio == 0.75
        assert settings.analysis_output_dir == ".code-analysis"
        assert settings.openai_system_role == "developer"


def test_settings_from_env():
    """Test loading settings from environment variables."""
    env = {
        "ANTHROPIC_API_KEY": "test_anthropic_key",
        "DEFAULT_MODEL": "claude-opus-4",
        "MAX_ITERATIONS": "12",
        "TEMPERATURE": "0.3",
        "ANALYSIS_OUTPUT_DIR": "/out/",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)

        assert settings.anthropic_api_key == "test_anthropic_key"
        assert settings.default_model == "claude-opus-4"
        assert settings.max_iterations == 12
        assert settings.temperature == 0.3
        assert settings.analysis_output_dir == "out"


def test_target_directory_defaults_to_cwd(tmp_path, monkeypatch):
    """Test the project root falls back to the working directory."""
    monkeypatch.chdir(tmp_path)
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.target_directory == tmp_path.resolve()


def test_get_llm_config():
    """Test getting LLM configuration."""
    env = {
        "ANTHROPIC_API_KEY": "test_key",
        "DEFAULT_PROVIDER": "anthropic",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)
        config = settings.get_llm_config()

        assert config.provider == "anthropic"
        assert config.api_key == "test_key"
        assert "claude" in config.model.lower()
        assert config.base_url is None


def test_get_llm_config_openai():
    """Test getting OpenAI LLM configuration."""
    env = {
        "OPENAI_API_KEY": "test_openai_key",
        "DEFAULT_MODEL": "claude-opus-4",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)
        config = settings.get_llm_config("openai")

        assert config.provider == "openai"
        assert config.api_key == "test_openai_key"
        assert "gpt" in config.model.lower()
        assert config.system_role == "developer"


def test_get_llm_config_compatible_endpoints():
    """Test OpenAI-compatible providers get base URLs and the system role."""
    env = {"DEEPSEEK_API_KEY": "ds", "OPENROUTER_API_KEY": "or"}

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)
        deepseek = settings.get_llm_config("deepseek")
        openrouter = settings.get_llm_config("openrouter")

        assert deepseek.base_url == "https://api.deepseek.com"
        assert deepseek.system_role == "system"
        assert openrouter.base_url == "https://openrouter.ai/api/v1"


def test_get_llm_config_unknown_provider():
    """Test unknown providers are rejected."""
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ValueError):
            Settings(_env_file=None).get_llm_config("nope")


def test_create_llm_routes_providers():
    """Test provider routing in the factory."""
    assert isinstance(create_llm(LLMConfig(provider="anthropic", api_key="k")), AnthropicLLM)

    llm = create_llm(LLMConfig(provider="google", model="gemini-2.5-flash", api_key="k", system_role="system"))
    assert isinstance(llm, OpenAILLM)
    assert llm.system_role == "system"


def test_create_llm_requires_key():
    """Test a missing API key fails fast."""
    with pytest.raises(ValueError):
        create_llm(LLMConfig(provider="openai", api_key=""))


def test_cli_config_masks_keys(capsys):
    """Test the config command never prints full API keys."""
    from code_analysis_agent.cli import show_config

    env = {"ANTHROPIC_API_KEY": "sk-ant-1234567890abcdef"}
    with patch.dict(os.environ, env, clear=True):
        show_config(Settings(_env_file=None))

    out = capsys.readouterr().out
    assert "sk-ant-1234567890abcdef" not in out
    assert "sk-a...cdef" in out
    assert "OpenAI Key: (not set)" in out


def test_cli_run_parser():
    """Test the run command arguments."""
    from code_analysis_agent.cli import build_parser

    args = build_parser().parse_args(
        ["run", "--system", "sys", "-m", "go", "--provider", "openai", "--max-iterations", "5"]
    )

    assert args.command == "run"
    assert args.message == "go"
    assert args.max_iterations == 5
    assert args.system_file is None


def test_debug_overrides_log_level():
    """Test DEBUG mode forces debug logging."""
    with patch.dict(os.environ, {"LOG_LEVEL": "warning"}, clear=True):
        assert Settings(_env_file=None).effective_log_level == "WARNING"

    with patch.dict(os.environ, {"LOG_LEVEL": "warning", "DEBUG": "true"}, clear=True):
        assert Settings(_env_file=None).effective_log_level == "DEBUG"


def test_cli_config_header_uses_app_name(capsys):
    """Test the config banner shows the application name."""
    from code_analysis_agent.cli import show_config

    with patch.dict(os.environ, {"APP_NAME": "my-analyzer"}, clear=True):
        show_config(Settings(_env_file=None))

    assert "=== my-analyzer Configuration ===" in capsys.readouterr().out


def test_create_llm_keeps_compatible_provider_name():
    """Test compatible endpoints report their own provider name."""
    llm = create_llm(LLMConfig(provider="deepseek", model="deepseek-chat", api_key="k", system_role="system"))

    assert isinstance(llm, OpenAILLM)
    assert llm.provider_name == "deepseek"
    assert create_llm(LLMConfig(provider="openai", api_key="k")).provider_name == "openai"
