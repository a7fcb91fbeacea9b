import pytest

from journey_module.config import LiveDataCredentials, PlannerSettings, PTV_API_BASE


def test_defaults():
    settings = PlannerSettings()

    assert settings.transfer_penalty == 5.0
    assert settings.transfer_buffer == 3.0
    assert settings.synthetic_headway == 12.0
    assert settings.lookahead == 4
    assert settings.max_itineraries == 3
    assert settings.rate_limit_interval_s == 0.3


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("PLANNER_TRANSFER_BUFFER", "4.5")
    monkeypatch.setenv("PLANNER_LOOKAHEAD", "2")
    monkeypatch.setenv("PLANNER_REGIONAL_ALLOWED_STATIONS", "Southern Cross, Richmond")

    settings = PlannerSettings.from_env()

    assert settings.transfer_buffer == 4.5
    assert settings.lookahead == 2
    assert settings.regional_allowed_stations == ("Southern Cross", "Richmond")
    assert "Richmond" not in settings.regional_blocked_stations


def test_from_env_invalid(monkeypatch):
    monkeypatch.setenv("PLANNER_MAX_WORKERS", "many")

    with pytest.raises(EnvironmentError):
        PlannerSettings.from_env()


def test_credentials_from_env(monkeypatch):
    monkeypatch.setenv("PTV_DEV_ID", "1234")
    monkeypatch.setenv("PTV_API_KEY", " secret ")
    monkeypatch.delenv("PTV_API_BASE", raising=False)

    credentials = LiveDataCredentials.from_env()

    assert credentials == LiveDataCredentials("1234", "secret", PTV_API_BASE)


def test_missing_credentials(monkeypatch):
    monkeypatch.delenv("PTV_DEV_ID", raising=False)
    monkeypatch.setenv("PTV_API_KEY", "secret")

    with pytest.raises(EnvironmentError):
        LiveDataCredentials.from_env()
