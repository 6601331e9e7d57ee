import pytest
from pydantic import ValidationError

from double_restraint.config import Settings


def test_settings_defaults(monkeypatch):
    for key in ("REDIS_URL", "RESTRAINT_KEY_PREFIX", "RESTRAINT_SLOT_TIMEOUT", "LOG_LEVEL", "LOG_JSON"):
        monkeypatch.delenv(key, raising=False)

    s = Settings(_env_file=None)
    assert s.redis_url is None
    assert s.key_prefix == "double_restraint:"
    assert s.slot_timeout == 60.0
    assert s.log_level == "INFO"
    assert s.log_json is False


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/1")
    monkeypatch.setenv("RESTRAINT_SLOT_TIMEOUT", "12.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_JSON", "true")

    s = Settings(_env_file=None)
    assert s.redis_url == "redis://localhost:6379/1"
    assert s.slot_timeout == 12.5
    assert s.log_level == "DEBUG"
    assert s.log_json is True


def test_settings_reject_invalid_slot_timeout(monkeypatch):
    monkeypatch.setenv("RESTRAINT_SLOT_TIMEOUT", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_settings_reject_unknown_log_level():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="chatty")
