"""
Tests for environment variable validation.

Each test manipulates ``os.environ`` via the ``clean_env`` fixture to ensure
isolation between test cases.
"""

import pytest

from youtube_mcp_gateway.env_validation import ValidationResult, validate_environment


# All env vars the validation module inspects; removed before each test so
# the host machine's environment doesn't leak in.
_ENV_VARS_UNDER_TEST = (
    "GATEWAY_SKIP_ENV_VALIDATION",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GATEWAY_SECRET_KEY",
    "GATEWAY_BASE_URL",
    "CREDENTIAL_STORE_BACKEND",
    "GATEWAY_WORKERS",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_SSL",
    "GATEWAY_CORS_CREDENTIALS",
    "OAUTH_FLOW_TTL_SECONDS",
    "OAUTH_CODE_TTL_SECONDS",
    "ACCESS_TOKEN_TTL_SECONDS",
    "UPSTREAM_EXCHANGE_MAX_ATTEMPTS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove all env vars under test before each test case."""
    for var in _ENV_VARS_UNDER_TEST:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def configured_env(monkeypatch):
    """A complete, valid configuration."""
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "id.apps.googleusercontent.com")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
    monkeypatch.setenv("GATEWAY_SECRET_KEY", "k" * 48)
    monkeypatch.setenv("GATEWAY_BASE_URL", "https://mcp.example.com")


class TestSkipValidation:
    """Tests for GATEWAY_SKIP_ENV_VALIDATION behaviour."""

    @pytest.mark.parametrize("value", ["true", "1", "yes"])
    def test_skip_returns_empty_result(self, monkeypatch, value):
        monkeypatch.setenv("GATEWAY_SKIP_ENV_VALIDATION", value)
        monkeypatch.setenv("CREDENTIAL_STORE_BACKEND", "postgres")
        result = validate_environment()
        assert result.errors == []
        assert result.warnings == []


class TestGoogleCredentials:
    def test_missing_credentials_are_errors(self):
        result = validate_environment()
        assert any("GOOGLE_CLIENT_ID" in e for e in result.errors)
        assert any("GOOGLE_CLIENT_SECRET" in e for e in result.errors)

    def test_complete_config_is_clean(self, configured_env):
        result = validate_environment()
        assert result == ValidationResult()


class TestSecretKey:
    def test_missing_secret_warns(self, configured_env, monkeypatch):
        monkeypatch.delenv("GATEWAY_SECRET_KEY")
        result = validate_environment()
        assert any("ephemeral" in w for w in result.warnings)

    def test_short_secret_warns(self, configured_env, monkeypatch):
        monkeypatch.setenv("GATEWAY_SECRET_KEY", "short")
        result = validate_environment()
        assert any("shorter than" in w for w in result.warnings)


class TestBaseUrl:
    def test_relative_url_is_error(self, configured_env, monkeypatch):
        monkeypatch.setenv("GATEWAY_BASE_URL", "/gateway")
        result = validate_environment()
        assert any("GATEWAY_BASE_URL" in e for e in result.errors)

    def test_plain_http_remote_host_warns(self, configured_env, monkeypatch):
        monkeypatch.setenv("GATEWAY_BASE_URL", "http://mcp.example.com")
        result = validate_environment()
        assert any("Secure" in w for w in result.warnings)

    def test_plain_http_localhost_is_fine(self, configured_env, monkeypatch):
        monkeypatch.setenv("GATEWAY_BASE_URL", "http://localhost:8787")
        assert validate_environment().warnings == []


class TestStoreBackend:
    def test_unknown_backend_is_error(self, configured_env, monkeypatch):
        monkeypatch.setenv("CREDENTIAL_STORE_BACKEND", "postgres")
        result = validate_environment()
        assert any("postgres" in e for e in result.errors)

    def test_memory_with_workers_warns(self, configured_env, monkeypatch):
        monkeypatch.setenv("GATEWAY_WORKERS", "4")
        result = validate_environment()
        assert any("multiple workers" in w for w in result.warnings)

    def test_redis_without_host_warns(self, configured_env, monkeypatch):
        monkeypatch.setenv("CREDENTIAL_STORE_BACKEND", "redis")
        result = validate_environment()
        assert any("REDIS_HOST" in w for w in result.warnings)

    def test_redis_bad_port_warns(self, configured_env, monkeypatch):
        monkeypatch.setenv("CREDENTIAL_STORE_BACKEND", "redis")
        monkeypatch.setenv("REDIS_HOST", "redis")
        monkeypatch.setenv("REDIS_PORT", "99999")
        result = validate_environment()
        assert any("REDIS_PORT" in w for w in result.warnings)


class TestTypedVars:
    def test_bad_boolean_warns(self, configured_env, monkeypatch):
        monkeypatch.setenv("REDIS_SSL", "maybe")
        result = validate_environment()
        assert any("REDIS_SSL" in w for w in result.warnings)

    @pytest.mark.parametrize("value", ["0", "-5", "ten"])
    def test_bad_positive_int_warns(self, configured_env, monkeypatch, value):
        monkeypatch.setenv("OAUTH_FLOW_TTL_SECONDS", value)
        result = validate_environment()
        assert any("OAUTH_FLOW_TTL_SECONDS" in w for w in result.warnings)

    def test_never_raises(self, monkeypatch):
        monkeypatch.setenv("REDIS_PORT", "abc")
        monkeypatch.setenv("CREDENTIAL_STORE_BACKEND", "redis")
        validate_environment()
