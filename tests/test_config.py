"""Tests for configuration loading."""

import pytest

from soukbot.core.config import DEFAULT_CONFIG_PATH, SoukBotConfig, get_config, set_config
from soukbot.utils.result_cache import NAMESPACE_CONVERSATION, NAMESPACE_KNOWLEDGE, NAMESPACE_PARTNER_SEARCH


@pytest.fixture(autouse=True)
def restore_global_config():
    previous = get_config()
    yield
    set_config(previous)


class TestSoukBotConfig:
    def test_default_yaml_matches_defaults(self):
        assert SoukBotConfig.from_yaml(DEFAULT_CONFIG_PATH) == SoukBotConfig()

    def test_missing_file_gives_defaults(self, tmp_path):
        assert SoukBotConfig.from_yaml(tmp_path / "nope.yaml") == SoukBotConfig()

    def test_partial_override(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "soukbot:\n  brand_name: Souk\n"
            "context_validation:\n  thresholds:\n    in_context: 0.5\n"
            "learning:\n  policy: frequency_bias\n"
            "search:\n  timeout:\n    knowledge: 1.5\n",
            encoding="utf-8",
        )
        config = SoukBotConfig.from_yaml(path)
        assert config.brand_name == "Souk"
        assert config.in_context_threshold == 0.5
        assert config.learning_policy == "frequency_bias"
        assert config.knowledge_timeout == 1.5
        assert config.partner_timeout == 3.0
        assert config.general_keywords == SoukBotConfig().general_keywords

    def test_redis_url_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
        path = tmp_path / "config.yaml"
        path.write_text("session:\n  backend: redis\n", encoding="utf-8")
        config = SoukBotConfig.from_yaml(path)
        assert config.session_backend == "redis"
        assert config.redis_url == "redis://cache:6379/2"

    def test_resolve_path(self, tmp_path):
        config = SoukBotConfig()
        assert config.resolve_path("config/partners.yaml").exists()
        assert config.resolve_path(str(tmp_path)) == tmp_path

    def test_cache_policies(self):
        policies = SoukBotConfig(cache_ttl_knowledge=10, cache_max_partner_search=5).cache_policies()
        assert policies[NAMESPACE_KNOWLEDGE].ttl_seconds == 10
        assert policies[NAMESPACE_PARTNER_SEARCH].max_entries == 5
        assert set(policies) == {NAMESPACE_CONVERSATION, NAMESPACE_KNOWLEDGE, NAMESPACE_PARTNER_SEARCH}

    def test_global_config(self):
        custom = SoukBotConfig(brand_name="Autre")
        set_config(custom)
        assert get_config() is custom
