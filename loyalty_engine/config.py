"""
Configuration management for the loyalty engine.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared secret for the external cron caller (Authorization: Bearer ...)
    CRON_SECRET = os.getenv('CRON_SECRET', '')

    # Admin-only routes (retroactive promote, backfill, repair)
    ADMIN_API_KEY = os.getenv('ADMIN_API_KEY', '')

    # Daily recalculation pass - hour of day, UTC
    RECALCULATION_HOUR = int(os.getenv('RECALCULATION_HOUR', '2'))

    # Number of recent activities considered by the engagement score
    ACTIVITY_WINDOW = 100


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///loyalty_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,  # Verify connections before using
    }

    _secret_key = os.getenv('SECRET_KEY', '')
    SECRET_KEY = _secret_key

    WEAK_KEY_MARKERS = ('dev', 'change', 'default', 'test', 'secret', 'password')
    MIN_KEY_LENGTH = 32

    @classmethod
    def validate_secrets(cls) -> None:
        """
        Refuse to boot production with missing or weak secrets.

        SECRET_KEY must be long and not look like a placeholder. CRON_SECRET
        and ADMIN_API_KEY must be set, otherwise the cron and admin routes
        would reject every caller.

        Raises:
            RuntimeError: naming the first offending variable
        """
        key = cls._secret_key
        if not key:
            raise RuntimeError(
                "SECRET_KEY is not set. "
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )
        weak = next((m for m in cls.WEAK_KEY_MARKERS if m in key.lower()), None)
        if weak:
            raise RuntimeError(f"SECRET_KEY contains '{weak}' and looks like a placeholder")
        if len(key) < cls.MIN_KEY_LENGTH:
            raise RuntimeError(f"SECRET_KEY must be at least {cls.MIN_KEY_LENGTH} characters")

        for name in ('CRON_SECRET', 'ADMIN_API_KEY'):
            if not getattr(cls, name):
                raise RuntimeError(f"{name} is not set")


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    CRON_SECRET = 'test-cron-secret'
    ADMIN_API_KEY = 'test-admin-key'


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secrets()
