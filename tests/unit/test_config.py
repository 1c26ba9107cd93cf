import logging

import pytest

from homecontrol.config import AppConfig, load_config, setup_logging, validate_config


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "HA_TOKEN",
        "LLM_PROVIDER",
        "LLM_API_KEY",
        "LLM_BASE_URL",
        "LATITUDE",
        "LONGITUDE",
        "ENABLE_POOL_PUMP",
        "CLIMATE_TARGET_TEMP",
        "SCHEDULER_MAX_WORKERS",
        "SPRINKLER_ZONES",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    config = AppConfig()

    assert config.llm_provider == "none"
    assert config.timezone == "America/New_York"
    assert config.pump_start_time == "10:00"
    assert config.sprinkler_zones == 4
    assert config.climate_target_temp == 73.0
    assert config.enable_pump is True
    assert config.latitude is None


def test_environment_overrides(clean_env):
    clean_env.setenv("ENABLE_POOL_PUMP", "off")
    clean_env.setenv("SPRINKLER_ZONES", "6")
    clean_env.setenv("LATITUDE", "25.76")
    clean_env.setenv("LONGITUDE", "-80.19")

    config = AppConfig()

    assert config.enable_pump is False
    assert config.sprinkler_zones == 6
    assert (config.latitude, config.longitude) == (25.76, -80.19)


def test_non_numeric_value_is_rejected(clean_env):
    clean_env.setenv("SPRINKLER_ZONES", "four")
    with pytest.raises(ValueError, match="SPRINKLER_ZONES"):
        AppConfig()


def test_validate_config_reports_degraded_setup(clean_env):
    clean_env.setenv("LATITUDE", "25.76")
    config = AppConfig(llm_provider="openai", scheduler_max_workers=2, climate_target_temp=85)

    warnings = validate_config(config)

    assert any("HA_TOKEN" in w for w in warnings)
    assert any("LLM_API_KEY is empty" in w for w in warnings)
    assert any("LATITUDE and LONGITUDE" in w for w in warnings)
    assert any("SCHEDULER_MAX_WORKERS" in w for w in warnings)
    assert any("CLIMATE_TARGET_TEMP" in w for w in warnings)


def test_complete_config_has_no_warnings(clean_env):
    config = AppConfig(
        ha_token="token",
        llm_provider="anthropic",
        llm_api_key="key",
        latitude=25.76,
        longitude=-80.19,
    )
    assert validate_config(config) == []


def test_load_config_logs_warnings(clean_env, caplog):
    with caplog.at_level(logging.WARNING, logger="config_loader"):
        load_config()
    assert "HA_TOKEN is not set" in caplog.text


def test_setup_logging_is_idempotent(tmp_path):
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        setup_logging(debug=True, log_dir=str(tmp_path))
        setup_logging(debug=True, log_dir=str(tmp_path))

        ours = [h for h in root.handlers if h.name in {"homecontrol_console", "homecontrol_file"}]
        assert len(ours) == 2
        assert (tmp_path / "homecontrol.log").exists()
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)
