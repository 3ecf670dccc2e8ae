"""Configuration management - loads store.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from storekit_mirror.models import MirrorSettings, Product, StoreConfig


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class Config:
    """Application configuration loader and manager.

    Loads store.yaml and provides validated access to:
    - Product catalog definitions
    - Subscription identifiers
    - Persisted purchased identifiers used to seed the mirror
    - Mirror settings
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to store.yaml file. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/store.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._store_config: Optional[StoreConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/store.yaml")

    def _load_config(self) -> None:
        """Load and validate store.yaml configuration."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/store.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")

        try:
            self._store_config = StoreConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    @property
    def store(self) -> StoreConfig:
        """Get validated store configuration."""
        if self._store_config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._store_config

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def products(self) -> list[Product]:
        return self.store.products

    @property
    def product_ids(self) -> list[str]:
        """Get all purchasable product IDs, in configuration order."""
        return self.store.product_ids

    @property
    def subscription_ids(self) -> list[str]:
        """Get product IDs tracked for subscription expiry."""
        return self.store.subscription_ids

    @property
    def seed_purchased_ids(self) -> list[str]:
        return self.store.seed_purchased_ids

    @property
    def mirror_settings(self) -> MirrorSettings:
        """Get entitlement mirror settings."""
        return self.store.mirror

    def get_product_by_id(self, product_id: str) -> Optional[Product]:
        """Get product definition by ID.

        Args:
            product_id: Product ID (e.g., "pro.monthly")

        Returns:
            Product if found, None otherwise
        """
        for product in self.store.products:
            if product.id == product_id:
                return product
        return None

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
    """Drop the global configuration instance (useful for testing)."""
    global _config_instance
    _config_instance = None
