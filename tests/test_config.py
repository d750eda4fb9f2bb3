import pytest

from change_platform.core.config import DEFAULT_RULES_FILE, ConfigError, get_settings


def test_settings_read_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("CHANGE_CORS_ORIGINS", "https://a.test, https://b.test")
    monkeypatch.setenv("CHANGE_RATE_LIMIT_ENABLED", "true")
    monkeypatch.setenv("CHANGE_RATE_LIMIT_RPM", "42")

    s = get_settings()
    assert s.env == "test"
    assert s.data_dir == tmp_path / "data"
    assert s.max_failed_logins == 3
    assert s.cors_origins == ["https://a.test", "https://b.test"]
    assert s.rate_limit_enabled is True
    assert s.rate_limit_rpm == 42
    assert s.trust_proxy is False
    assert s.security_headers_enabled is False
    assert s.rules_file == DEFAULT_RULES_FILE


def test_prod_requires_real_secrets(monkeypatch):
    monkeypatch.setenv("CHANGE_ENV", "prod")
    with pytest.raises(ConfigError):
        get_settings()

    monkeypatch.setenv("CHANGE_JWT_SECRET", "prod-secret")
    monkeypatch.setenv("CHANGE_JWT_REFRESH_SECRET", "prod-refresh-secret")
    s = get_settings()
    assert s.is_prod
    assert s.security_headers_enabled is True


def test_trust_proxy_is_opt_in(monkeypatch):
    monkeypatch.setenv("CHANGE_TRUST_PROXY", "yes")
    assert get_settings().trust_proxy is True
