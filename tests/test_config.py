"""
Tests for configuration selection and production secret validation.
"""
import pytest


STRONG_KEY = 'f3a9c1e7b2d84c06a5e1f9b3d7c2a8e4'


class TestGetConfig:
    """Tests for get_config."""

    def test_known_and_unknown_names(self):
        """Test unknown names fall back to development."""
        from loyalty_engine.config import get_config, TestingConfig, DevelopmentConfig

        assert get_config('testing') is TestingConfig
        assert get_config('staging') is DevelopmentConfig


class TestProductionSecrets:
    """Tests for ProductionConfig.validate_secrets."""

    @pytest.fixture
    def prod(self, monkeypatch):
        from loyalty_engine.config import ProductionConfig

        monkeypatch.setattr(ProductionConfig, '_secret_key', STRONG_KEY)
        monkeypatch.setattr(ProductionConfig, 'CRON_SECRET', 'cron')
        monkeypatch.setattr(ProductionConfig, 'ADMIN_API_KEY', 'admin')
        return ProductionConfig

    def test_valid(self, prod):
        """Test strong secrets pass."""
        prod.validate_secrets()

    @pytest.mark.parametrize('key,message', [
        ('', 'not set'),
        ('my-dev-key-0000000000000000000000000', "contains 'dev'"),
        ('a1b2c3', 'at least 32'),
    ])
    def test_bad_secret_key(self, prod, monkeypatch, key, message):
        """Test missing, placeholder and short keys are refused."""
        monkeypatch.setattr(prod, '_secret_key', key)

        with pytest.raises(RuntimeError, match=message):
            prod.validate_secrets()

    @pytest.mark.parametrize('name', ['CRON_SECRET', 'ADMIN_API_KEY'])
    def test_route_secrets_required(self, prod, monkeypatch, name):
        """Test the cron and admin secrets must be set."""
        monkeypatch.setattr(prod, name, '')

        with pytest.raises(RuntimeError, match=name):
            prod.validate_secrets()

    def test_validate_config_only_checks_production(self, monkeypatch):
        """Test non-production names skip validation."""
        from loyalty_engine.config import ProductionConfig, validate_config

        monkeypatch.setattr(ProductionConfig, '_secret_key', '')

        validate_config('development')
        with pytest.raises(RuntimeError):
            validate_config('production')
