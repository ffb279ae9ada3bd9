"""Configuration management - loads service.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from subscription_service.models.settings import (
    CollaboratorConfig,
    NotificationConfig,
    PaymentGatewayConfig,
    ServiceConfig,
)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads service.yaml and provides validated access to:
    - Payment gateway settings (API key resolved from the environment)
    - Customer and billing collaborator endpoints
    - Invoice notification retry policy
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to service.yaml file. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/service.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._service_config: Optional[ServiceConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/service.yaml")

    def _load_config(self) -> None:
        """Load and validate service.yaml configuration."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/service.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")

        self._apply_env_overrides(raw_config)

        try:
            service_config = ServiceConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        api_key = os.getenv(service_config.payment_gateway.api_key_env)
        if service_config.payment_gateway.provider == "stripe" and not api_key:
            raise ConfigurationError(
                f"Stripe provider selected but {service_config.payment_gateway.api_key_env} is not set"
            )
        self._service_config = service_config.model_copy(update={"stripe_api_key": api_key})

    @staticmethod
    def _apply_env_overrides(raw_config: dict) -> None:
        """Override file values from the environment.

        CUSTOMER_SERVICE_URL / BILLING_SERVICE_URL replace collaborator base URLs,
        PAYMENT_GATEWAY_PROVIDER selects the gateway and NOTIFICATIONS_ENABLED
        switches invoice notifications on or off.
        """
        for section, key, env_var in (
            ("customer_service", "base_url", "CUSTOMER_SERVICE_URL"),
            ("billing_service", "base_url", "BILLING_SERVICE_URL"),
            ("payment_gateway", "provider", "PAYMENT_GATEWAY_PROVIDER"),
            ("notifications", "enabled", "NOTIFICATIONS_ENABLED"),
        ):
            value = os.getenv(env_var)
            if value:
                raw_config.setdefault(section, {})[key] = value

    @property
    def settings(self) -> ServiceConfig:
        """Get validated service configuration."""
        if self._service_config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._service_config

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def payment_gateway(self) -> PaymentGatewayConfig:
        return self.settings.payment_gateway

    @property
    def stripe_api_key(self) -> Optional[str]:
        return self.settings.stripe_api_key

    @property
    def customer_service(self) -> CollaboratorConfig:
        return self.settings.customer_service

    @property
    def billing_service(self) -> CollaboratorConfig:
        return self.settings.billing_service

    @property
    def notifications(self) -> NotificationConfig:
        return self.settings.notifications

    @property
    def subscription_number_prefix(self) -> str:
        """Get prefix for generated subscription numbers (e.g., "SUB")."""
        return self.settings.service.subscription_number_prefix

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reload_config() -> None:
    """Reload global configuration from disk."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()
    else:
        _config_instance = Config()


def reset_config() -> None:
    """Drop the global configuration instance (for testing)."""
    global _config_instance
    _config_instance = None
