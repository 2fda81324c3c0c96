from __future__ import annotations

import pytest

from glocal.config import AppConfig, Settings, load_yaml_config
from glocal.errors import ConfigurationError


def test_missing_file_yields_defaults(tmp_path):
    cfg = load_yaml_config(tmp_path / "absent.yaml")

    assert cfg == AppConfig()
    assert cfg.cache.default_ttl == 3600
    assert cfg.cache.max_ttl == 86400
    assert cfg.budget.monitored_services == ["google_maps", "news_api", "reddit_api", "openai"]


def test_yaml_sections_and_env_tokens(tmp_path, monkeypatch):
    monkeypatch.setenv("EXTRA_SERVICE", "weather_api")
    path = tmp_path / "config.yaml"
    path.write_text(
        """
cache:
  default_ttl: 120
  max_ttl: 600
budget:
  monitored_services: [openai, " openai ", os.environ/EXTRA_SERVICE]
  alert_ttl: 900
"""
    )

    cfg = load_yaml_config(path)

    assert cfg.cache.default_ttl == 120
    assert cfg.cache.max_ttl == 600
    assert cfg.budget.monitored_services == ["openai", "weather_api"]
    assert cfg.budget.alert_ttl == 900


@pytest.mark.parametrize(
    "content",
    [
        "cache: [unclosed",
        "- just\n- a list\n",
        "cache:\n  default_ttl: 10\n  max_ttl: 5\n",
        "budget:\n  alert_ttl: 0\n",
    ],
)
def test_invalid_config_raises_configuration_error(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content)

    with pytest.raises(ConfigurationError):
        load_yaml_config(path)


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("GLOCAL_REDIS_PORT", "6380")
    monkeypatch.setenv("GLOCAL_DATABASE_URL", "postgresql://glocal@localhost/glocal")

    settings = Settings()

    assert settings.redis_port == 6380
    assert settings.database_url == "postgresql://glocal@localhost/glocal"
    assert settings.redis_url is None
