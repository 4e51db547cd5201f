"""
Tests for configuration loading, validation and persistence.
python -m pytest tests/test_config.py -v
"""

import logging

import pytest
import yaml

import proxyai.config as config_module
from proxyai.config import (
    ProxyAIConfig, configure, configure_session, get_config, load_config, reset_config, save_config
)
from proxyai.constants import ASSISTANTS_BETA, DEFAULT_API_ENDPOINT
from proxyai.exceptions import ConfigurationError


class TestDefaults:
    def test_defaults(self):
        config = get_config()
        assert config.partial_key is None
        assert config.api_endpoint == DEFAULT_API_ENDPOINT
        assert config.assistants_beta == ASSISTANTS_BETA
        assert config.reuse_authorization is False
        assert config.api_timeout == 60.0

    def test_get_config_is_shared(self):
        assert get_config() is get_config()


class TestEnvironment:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("PROXYAI_PARTIAL_KEY", "v2|env|key")
        monkeypatch.setenv("PROXYAI_API_ENDPOINT", "https://gateway.test/v1")
        monkeypatch.setenv("AIPROXY_DEVICE_CHECK_BYPASS", "bypass")
        monkeypatch.setenv("PROXYAI_API_TIMEOUT", "12.5")
        monkeypatch.setenv("PROXYAI_REUSE_AUTHORIZATION", "yes")

        config = get_config()
        assert config.partial_key == "v2|env|key"
        assert config.api_endpoint == "https://gateway.test/v1"
        assert config.device_check_bypass == "bypass"
        assert config.api_timeout == 12.5
        assert config.reuse_authorization is True

    def test_unparseable_env_value_is_ignored(self, monkeypatch):
        monkeypatch.setenv("PROXYAI_API_TIMEOUT", "soon")
        assert get_config().api_timeout == 60.0

    def test_keyword_arguments_win_over_env(self, monkeypatch):
        monkeypatch.setenv("PROXYAI_PARTIAL_KEY", "v2|env|key")
        assert configure(partial_key="v2|kw|key").partial_key == "v2|kw|key"


class TestValidation:
    @pytest.mark.parametrize("kwargs", [
        {"api_endpoint": "ftp://gateway"},
        {"exchange_endpoint": "gateway/auth"},
        {"log_level": "LOUD"},
        {"log_format": "xml"},
        {"api_timeout": 0},
        {"exchange_timeout": -1},
        {"refresh_margin": -5},
        {"stream_chunk_size": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError) as exc_info:
            configure(**kwargs)
        assert exc_info.value.config_key == next(iter(kwargs))

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError) as exc_info:
            configure(no_such_option=True)
        assert exc_info.value.config_key == "no_such_option"

    def test_no_timeout_is_allowed(self):
        assert configure(api_timeout=None).api_timeout is None


class TestFiles:
    def test_project_file_is_read(self, tmp_path):
        (tmp_path / "proxyai.yaml").write_text("api_timeout: 7\norganization_id: org-file\n")

        config = get_config()
        assert config.api_timeout == 7
        assert config.organization_id == "org-file"

    def test_env_wins_over_file(self, tmp_path, monkeypatch):
        (tmp_path / "proxyai.yaml").write_text("organization_id: org-file\n")
        monkeypatch.setenv("PROXYAI_ORGANIZATION_ID", "org-env")
        assert get_config().organization_id == "org-env"

    def test_save_config_never_writes_secrets(self, tmp_path):
        configure(partial_key="v2|secret|key", device_check_bypass="bypass", organization_id="org-1")
        path = tmp_path / "saved.yaml"

        save_config(path)

        saved = yaml.safe_load(path.read_text())
        assert saved["organization_id"] == "org-1"
        assert "partial_key" not in saved
        assert "device_check_bypass" not in saved

    def test_save_config_default_location(self, tmp_path):
        save_config()
        assert (tmp_path / ".proxyai" / "config.yaml").exists()

    def test_load_config(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("api_timeout: 3\nreuse_authorization: true\n")

        config = load_config(path)
        assert config.api_timeout == 3
        assert config.reuse_authorization is True

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "missing.yaml")

    def test_load_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestSessions:
    def test_configure_session_restores_values(self):
        original = get_config().api_timeout

        with configure_session(api_timeout=5) as config:
            assert config.api_timeout == 5

        assert get_config().api_timeout == original

    def test_configure_session_rejects_invalid_values(self):
        original = get_config().api_endpoint

        with pytest.raises(ConfigurationError):
            with configure_session(api_endpoint="not-a-url"):
                pass

        assert get_config().api_endpoint == original

    def test_reset_config(self):
        configure(api_timeout=9)
        reset_config()
        assert get_config().api_timeout == 60.0
        assert isinstance(config_module._config, ProxyAIConfig)


def test_log_level_applies_to_package_logger_only():
    root_level = logging.getLogger().level
    configure(log_level="DEBUG")

    assert logging.getLogger("proxyai").level == logging.DEBUG
    assert logging.getLogger().level == root_level
