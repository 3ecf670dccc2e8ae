"""Tests for configuration loading and management."""

import pytest

from storekit_mirror.config import Config, ConfigurationError, get_config, reset_config
from storekit_mirror.models import ProductType


@pytest.fixture
def config():
    """Create a Config instance for the bundled store.yaml."""
    return Config()


@pytest.fixture
def write_config(tmp_path):
    """Write a store.yaml into a temp directory and return its path."""

    def _write(content: str) -> str:
        path = tmp_path / "store.yaml"
        path.write_text(content, encoding="utf-8")
        return str(path)

    return _write


class TestConfigurationLoading:
    """Test loading the bundled configuration."""

    def test_config_loads_successfully(self, config):
        """Test that configuration loads without errors."""
        assert config.config_path.exists()
        assert str(config.config_path).endswith("store.yaml")

    def test_products_loaded(self, config):
        """Test product definitions are parsed."""
        assert "pro.monthly" in config.product_ids
        product = config.get_product_by_id("pro.monthly")
        assert product.type == ProductType.AUTO_RENEWABLE
        assert product.is_subscription
        assert product.subscription_period == "P1M"

    def test_subscription_ids_are_products(self, config):
        """Test every subscription ID is a configured product."""
        assert set(config.subscription_ids) <= set(config.product_ids)

    def test_mirror_settings(self, config):
        """Test mirror settings defaults."""
        assert config.mirror_settings.force_sync_on_start is False
        assert config.mirror_settings.retain_on_revocation == []

    def test_unknown_product_lookup(self, config):
        """Test lookup of a product that is not configured."""
        assert config.get_product_by_id("missing") is None


class TestConfigurationErrors:
    """Test invalid configuration handling."""

    def test_missing_file(self, tmp_path):
        """Test a missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="not found"):
            Config(str(tmp_path / "nope.yaml"))

    def test_empty_file(self, write_config):
        """Test an empty file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="empty"):
            Config(write_config(""))

    def test_invalid_yaml(self, write_config):
        """Test malformed YAML raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="parse"):
            Config(write_config("products: [unclosed"))

    def test_subscription_not_a_product(self, write_config):
        """Test subscription IDs must be listed under products."""
        path = write_config(
            "products:\n"
            "  - id: trial\n"
            "    display_name: Trial\n"
            "    price: '0'\n"
            "subscription_ids: [pro]\n"
        )

        with pytest.raises(ConfigurationError, match="validation failed"):
            Config(path)

    def test_invalid_subscription_period(self, write_config):
        """Test subscription periods are validated."""
        path = write_config(
            "products:\n"
            "  - id: pro\n"
            "    type: auto_renewable\n"
            "    display_name: Pro\n"
            "    price: '4.99'\n"
            "    subscription_period: monthly\n"
        )

        with pytest.raises(ConfigurationError):
            Config(path)


class TestConfigurationSources:
    """Test how the configuration path is resolved."""

    def test_env_var_path(self, write_config, monkeypatch):
        """Test CONFIG_PATH is used when no path is given."""
        path = write_config("products:\n  - id: solo\n    display_name: Solo\n    price: '1'\n")
        monkeypatch.setenv("CONFIG_PATH", path)

        assert Config().product_ids == ["solo"]

    def test_reload(self, write_config):
        """Test reload picks up file changes."""
        path = write_config("products:\n  - id: a\n    display_name: A\n    price: '1'\n")
        config = Config(path)

        write_config("products:\n  - id: b\n    display_name: B\n    price: '1'\n")
        config.reload()

        assert config.product_ids == ["b"]

    def test_singleton(self):
        """Test get_config returns the same instance until reset."""
        reset_config()
        first = get_config()

        assert get_config() is first

        reset_config()
        assert get_config() is not first
        reset_config()
