import pytest

import config
from errors import ConfigurationError


def test_test_environment_loaded_by_default():
    assert config.settings.env == "test"
    assert config.CLIENT_WAIT_TIMEOUT == config.settings.timeouts.client_wait_timeout == 5
    assert config.LOGGING.level.upper() == "DEBUG"
    assert config.DB_BACKEND == "memory"


def test_reload_settings_switch_environment(monkeypatch):
    monkeypatch.setenv("RELAY_ENV", "production")
    new_settings = config.reload_settings(env="production")
    assert new_settings.env == "production"
    assert config.LOGGING.level.upper() == "WARNING"
    assert new_settings.registry.open_registration is False

    # restore test environment for subsequent tests
    monkeypatch.setenv("RELAY_ENV", "test")
    config.reload_settings(env="test")


def test_set_database_path(temp_database):
    assert config.DB_PATH == temp_database
    assert config.settings.database.path == temp_database


def test_env_variable_overrides(monkeypatch):
    monkeypatch.setenv("RELAY_CALL_TIMEOUT", "2.5")
    monkeypatch.setenv("RELAY_OPEN_REGISTRATION", "no")
    loaded = config.load_settings(env="test")
    assert loaded.reconciler.call_timeout == 2.5
    assert loaded.registry.open_registration is False


def test_invalid_env_variable_raises(monkeypatch):
    monkeypatch.setenv("RELAY_PORT", "not-a-port")
    with pytest.raises(ConfigurationError):
        config.load_settings(env="test")


@pytest.mark.parametrize(
    "overrides",
    [
        {"reconciler": {"call_timeout": 0}},
        {"reconciler": {"max_concurrency": 0}},
        {"relayer": {"privkey": "zz"}},
        {"relayer": {"asset_id": "abc"}},
        {"database": {"backend": "postgres"}},
        {"ledger": {"marker_validity": 0}},
    ],
)
def test_validation_rejects_bad_values(overrides):
    with pytest.raises(ConfigurationError):
        config.load_settings(env="test", overrides=overrides)


def test_relayer_defaults():
    assert len(config.RELAYER_PRIVKEY) == 64
    assert config.ASSET_ID == config.DEFAULT_ASSET_ID
    assert config.ASSET_DECIMALS == 6
