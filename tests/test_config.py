"""Test configuration reading from multiple sources."""

import os
from datetime import timedelta
from unittest.mock import patch

from tutorchat.configs.config import AppConfig, get_app_config


class TestConfigSources:
    """Test configuration loading from multiple sources."""

    def test_static_yaml_values_load(self):
        config = AppConfig()

        assert config.provider.default_model == "gpt-3.5-turbo"
        assert config.chat.history_read_limit == 5
        assert config.chat.history_max_exchanges == 4
        assert config.cache.ttl == timedelta(minutes=5)
        assert config.rag.top_k == 3
        assert config.rag.similarity_threshold == 0.7

    def test_env_vars_override_yaml(self):
        env_vars = {
            "TUTORCHAT_PROVIDER__DEFAULT_MODEL": "claude-3-haiku-20240307",
            "TUTORCHAT_CACHE__ENABLED": "false",
            "TUTORCHAT_RAG__TOP_K": "5",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            config = AppConfig()

            assert config.provider.default_model == "claude-3-haiku-20240307"
            assert config.cache.enabled is False
            assert config.rag.top_k == 5

    def test_prompt_template_loaded_from_prompt_file(self):
        template = AppConfig().provider.default_prompt_template

        assert "{student_name}" in template
        assert "{activity_title}" in template
        assert "secondary-school" in template

    def test_get_app_config_is_not_cached(self):
        config1 = get_app_config()
        config2 = get_app_config()

        assert config1 is not config2
        assert isinstance(config1, AppConfig)
        assert config1.provider == config2.provider
