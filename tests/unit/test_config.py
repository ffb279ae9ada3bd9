"""Tests for configuration loading and management."""

import pytest

from subscription_service.config import Config, ConfigurationError, get_config, reset_config

VALID_CONFIG = """
service:
  name: subscription-service
  subscription_number_prefix: SUB
payment_gateway:
  provider: local
customer_service:
  base_url: http://localhost:5001
billing_service:
  base_url: http://localhost:5002
  timeout_seconds: 2.5
notifications:
  max_attempts: 1
"""


@pytest.fixture
def config_file(tmp_path):
    """Write a config file and return a function that writes one with given content."""

    def write(content: str = VALID_CONFIG):
        path = tmp_path / "service.yaml"
        path.write_text(content, encoding="utf-8")
        return path

    return write


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CONFIG_PATH",
        "CUSTOMER_SERVICE_URL",
        "BILLING_SERVICE_URL",
        "PAYMENT_GATEWAY_PROVIDER",
        "NOTIFICATIONS_ENABLED",
        "STRIPE_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


class TestConfigurationLoading:
    """Test basic configuration loading."""

    def test_repository_config_loads(self):
        """The shipped config/service.yaml is valid."""
        config = Config()
        assert str(config.config_path).endswith("service.yaml")
        assert config.payment_gateway.provider == "local"
        assert config.notifications.billing_period == "P1M"

    def test_explicit_path(self, config_file):
        config = Config(str(config_file()))
        assert config.subscription_number_prefix == "SUB"
        assert config.billing_service.timeout_seconds == 2.5
        assert config.notifications.max_attempts == 1

    def test_defaults_for_omitted_sections(self, config_file):
        config = Config(str(config_file()))
        assert config.payment_gateway.currency == "eur"
        assert config.payment_gateway.interval == "month"
        assert config.customer_service.timeout_seconds == 5.0
        assert config.notifications.enabled is True
        assert config.settings.cors_origins == ["*"]

    def test_config_path_env_var(self, config_file, monkeypatch):
        path = config_file()
        monkeypatch.setenv("CONFIG_PATH", str(path))
        assert Config().config_path == path


class TestConfigurationErrors:
    """Test invalid configuration handling."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            Config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, config_file):
        with pytest.raises(ConfigurationError, match="empty"):
            Config(str(config_file("")))

    def test_invalid_yaml(self, config_file):
        with pytest.raises(ConfigurationError, match="parse"):
            Config(str(config_file("service: [unclosed")))

    def test_missing_required_section(self, config_file):
        with pytest.raises(ConfigurationError, match="validation"):
            Config(str(config_file("customer_service:\n  base_url: http://x\n")))

    def test_unknown_provider(self, config_file):
        content = VALID_CONFIG.replace("provider: local", "provider: paypal")
        with pytest.raises(ConfigurationError):
            Config(str(config_file(content)))

    def test_invalid_billing_period(self, config_file):
        content = VALID_CONFIG + "  billing_period: monthly\n"
        with pytest.raises(ConfigurationError):
            Config(str(config_file(content)))

    def test_stripe_requires_api_key(self, config_file):
        content = VALID_CONFIG.replace("provider: local", "provider: stripe")
        with pytest.raises(ConfigurationError, match="STRIPE_API_KEY"):
            Config(str(config_file(content)))


class TestEnvironmentOverrides:
    """Test secrets and URL overrides from the environment."""

    def test_stripe_api_key_from_env(self, config_file, monkeypatch):
        monkeypatch.setenv("STRIPE_API_KEY", "sk_test_123")
        content = VALID_CONFIG.replace("provider: local", "provider: stripe")
        config = Config(str(config_file(content)))
        assert config.stripe_api_key == "sk_test_123"
        # the secret is never serialized
        assert "stripe_api_key" not in config.settings.model_dump()

    def test_collaborator_urls_from_env(self, config_file, monkeypatch):
        monkeypatch.setenv("CUSTOMER_SERVICE_URL", "http://customers:8000")
        monkeypatch.setenv("BILLING_SERVICE_URL", "http://billing:8000")
        config = Config(str(config_file()))
        assert config.customer_service.base_url == "http://customers:8000"
        assert config.billing_service.base_url == "http://billing:8000"

    def test_gateway_provider_from_env(self, config_file, monkeypatch):
        monkeypatch.setenv("PAYMENT_GATEWAY_PROVIDER", "stripe")
        monkeypatch.setenv("STRIPE_API_KEY", "sk_test_123")
        config = Config(str(config_file()))
        assert config.payment_gateway.provider == "stripe"

    def test_gateway_provider_from_env_is_validated(self, config_file, monkeypatch):
        monkeypatch.setenv("PAYMENT_GATEWAY_PROVIDER", "paypal")
        with pytest.raises(ConfigurationError):
            Config(str(config_file()))

    def test_notifications_disabled_from_env(self, config_file, monkeypatch):
        monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")
        config = Config(str(config_file()))
        assert config.notifications.enabled is False
        assert config.notifications.max_attempts == 1


class TestGlobalConfig:
    """Test singleton accessors."""

    def test_get_config_is_singleton(self, config_file):
        path = str(config_file())
        assert get_config(path) is get_config()

    def test_reload_picks_up_changes(self, config_file):
        path = config_file()
        config = get_config(str(path))
        path.write_text(VALID_CONFIG.replace("max_attempts: 1", "max_attempts: 5"), encoding="utf-8")
        config.reload()
        assert config.notifications.max_attempts == 5
