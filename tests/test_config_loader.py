import os

import pytest

from asset_crawler.errors import InvalidInput
from asset_crawler.models import JobConfig
from asset_crawler.utils.config_loader import (
    DEFAULT_USER_AGENT,
    load_config,
    load_environment,
)


def test_load_config_defaults():
    config = load_config()

    assert config.port == 3000
    assert config.timeout == 30_000
    assert config.max_concurrent == 5
    assert config.rate_limit == 100
    assert config.max_retries == 3
    assert config.crawler_user_agent == DEFAULT_USER_AGENT


def test_load_config_reads_yaml_crawler_section(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("crawler:\n  max_concurrent: 9\n  save_path: /srv/assets\n  unknown: 1\n")

    config = load_config(config_file)

    assert config.max_concurrent == 9
    assert config.save_path == "/srv/assets"


def test_load_config_prefers_environment_over_file(monkeypatch, tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("crawler:\n  timeout: 1000\n  rate_limit: 7\n")
    monkeypatch.setenv("TIMEOUT", "2500")

    config = load_config(config_file)

    assert config.timeout == 2500
    assert config.rate_limit == 7


def test_crawler_user_agent_from_environment_reaches_job_config(monkeypatch):
    monkeypatch.setenv("CRAWLER_USER_AGENT", "CustomBot/2.0")

    assert JobConfig.from_config(load_config()).user_agent == "CustomBot/2.0"


def test_load_environment_from_custom_file(monkeypatch, tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("SAVE_PATH=/data/assets\nMAX_CONCURRENT=4\n")
    # registered with monkeypatch so the values loaded below are rolled back
    monkeypatch.setenv("SAVE_PATH", "/placeholder")
    monkeypatch.setenv("MAX_CONCURRENT", "1")

    loaded = load_environment(env_file, override=True)

    assert loaded is True
    assert os.getenv("SAVE_PATH") == "/data/assets"
    assert load_config().max_concurrent == 4


def test_load_environment_missing_file(tmp_path):
    assert load_environment(tmp_path / "missing.env") is False


def test_job_config_from_config_maps_service_settings(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT", "12")
    monkeypatch.setenv("SAVE_PATH", "/tmp/assets")

    job_config = JobConfig.from_config(load_config())

    assert job_config.rate_limit_per_interval == 12
    assert job_config.save_root == "/tmp/assets"
    assert job_config.timeout_seconds == 30.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_concurrent": 0},
        {"rate_limit_per_interval": -1},
        {"timeout_millis": "soon"},
        {"unknown_option": True},
    ],
)
def test_with_overrides_rejects_invalid_values(overrides):
    with pytest.raises(InvalidInput):
        JobConfig().with_overrides(**overrides)


def test_with_overrides_ignores_none_and_keeps_defaults():
    config = JobConfig().with_overrides(max_concurrent=2, timeout_millis=None)

    assert config.max_concurrent == 2
    assert config.timeout_millis == 30_000
