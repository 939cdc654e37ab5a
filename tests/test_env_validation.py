import pytest

import env_validation
from env_validation import EnvironmentError, get_env_bool, get_env_int, validate_environment

_VARS = (
    "DB_PATH",
    "REDIS_URL",
    "CACHE_NAMESPACE",
    "CACHE_DEFAULT_TTL",
    "CACHE_TIMEOUT_SECONDS",
    "RECOMMENDATION_MAX_LIMIT",
    "SEED_CATALOG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _VARS:
        # setenv first so values written by validate_environment are restored
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


def test_defaults_are_applied(caplog):
    with caplog.at_level("WARNING", logger=env_validation.__name__):
        settings = validate_environment()
    assert settings.db_path == "data.db"
    assert settings.redis_url is None
    assert settings.cache_namespace == "reved"
    assert settings.cache_default_ttl == 3600
    assert settings.cache_timeout_seconds == 0.5
    assert settings.recommendation_max_limit == 20
    assert settings.seed_catalog is True
    assert "REDIS_URL" in caplog.text


def test_explicit_values(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("CACHE_DEFAULT_TTL", "60")
    monkeypatch.setenv("SEED_CATALOG", "no")
    monkeypatch.setenv("CACHE_NAMESPACE", "kids")
    settings = validate_environment()
    assert settings.redis_url == "redis://localhost:6379/0"
    assert settings.cache_default_ttl == 60
    assert settings.seed_catalog is False
    assert settings.cache_namespace == "kids"


@pytest.mark.parametrize(
    "var, value",
    [
        ("REDIS_URL", "http://localhost"),
        ("CACHE_DEFAULT_TTL", "0"),
        ("CACHE_DEFAULT_TTL", "soon"),
        ("CACHE_TIMEOUT_SECONDS", "-1"),
        ("RECOMMENDATION_MAX_LIMIT", "0"),
    ],
)
def test_invalid_values(monkeypatch, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_helpers(monkeypatch):
    monkeypatch.setenv("FLAG", "Yes")
    assert get_env_bool("FLAG") is True
    assert get_env_bool("MISSING", True) is True
    monkeypatch.setenv("NUM", " ")
    assert get_env_int("NUM", 7) == 7
