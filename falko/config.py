"""
Configuration management for the Falko loyalty and returns service.
"""
import json
import os
from dotenv import load_dotenv

load_dotenv()


def _json_env(name: str, default: dict) -> dict:
    raw = os.getenv(name)
    if not raw:
        return default
    return json.loads(raw)


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Signed order/return events from the commerce platform
    WEBHOOK_SECRET = os.getenv('WEBHOOK_SECRET', '')

    # Loyalty program rules (amounts in minor currency units)
    LOYALTY_POINTS_PER_UNIT = float(os.getenv('LOYALTY_POINTS_PER_UNIT', '1'))
    LOYALTY_FIRST_ORDER_BONUS = float(os.getenv('LOYALTY_FIRST_ORDER_BONUS', '2.0'))
    LOYALTY_MINIMUM_ORDER_VALUE = int(os.getenv('LOYALTY_MINIMUM_ORDER_VALUE', '5000'))
    LOYALTY_MAX_POINTS_PER_ORDER = int(os.getenv('LOYALTY_MAX_POINTS_PER_ORDER', '1000'))
    LOYALTY_CATEGORY_MULTIPLIERS = _json_env(
        'LOYALTY_CATEGORY_MULTIPLIERS',
        {'new-arrivals': 1.5, 'sale': 0.5}
    )

    # Returns
    RETURN_WINDOW_DAYS = int(os.getenv('RETURN_WINDOW_DAYS', '14'))
    RETURN_POINTS_BONUS_PERCENT = int(os.getenv('RETURN_POINTS_BONUS_PERCENT', '10'))

    # Collaborators
    COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv('COLLABORATOR_TIMEOUT_SECONDS', '10'))
    COMMERCE_API_URL = os.getenv('COMMERCE_API_URL', 'http://localhost:9000')
    COMMERCE_API_TOKEN = os.getenv('COMMERCE_API_TOKEN', '')
    FURGONETKA_BASE_URL = os.getenv('FURGONETKA_BASE_URL', 'https://api.sandbox.furgonetka.pl')
    FURGONETKA_OAUTH_CLIENT_ID = os.getenv('FURGONETKA_OAUTH_CLIENT_ID', '')
    FURGONETKA_OAUTH_CLIENT_SECRET = os.getenv('FURGONETKA_OAUTH_CLIENT_SECRET', '')
    SENDGRID_API_KEY = os.getenv('SENDGRID_API_KEY', '')
    SENDGRID_FROM_EMAIL = os.getenv('SENDGRID_FROM_EMAIL', 'noreply@falkoproject.com')
    SENDGRID_FROM_NAME = os.getenv('SENDGRID_FROM_NAME', 'Falko Project')
    STORE_NAME = os.getenv('STORE_NAME', 'Falko Project')

    # Warehouse address returns are shipped back to
    RETURN_WAREHOUSE_ADDRESS = {
        'company': os.getenv('STORE_NAME', 'Falko Project'),
        'name': os.getenv('STORE_CONTACT_NAME', 'Falko'),
        'surname': os.getenv('STORE_CONTACT_SURNAME', 'Project'),
        'street': os.getenv('STORE_ADDRESS', 'ul. Przykładowa 1'),
        'city': os.getenv('STORE_CITY', 'Warszawa'),
        'postcode': os.getenv('STORE_POSTCODE', '00-001'),
        'country_code': 'PL',
        'phone': os.getenv('STORE_PHONE', '+48 123 456 789'),
        'email': os.getenv('STORE_EMAIL', 'sklep@falkoproject.com'),
    }


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///falko_dev.db'  # SQLite fallback for local dev
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
        'pool_pre_ping': True,
    }

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing or too short
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Customer tokens cannot be verified without it."
            )

        if len(cls._secret_key) < 32:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!\n"
                "Generate a secure key with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        return cls._secret_key

    SECRET_KEY = _secret_key

    _webhook_secret = os.getenv('WEBHOOK_SECRET', '')

    @classmethod
    def validate_webhook_secret(cls) -> str:
        """
        Validate WEBHOOK_SECRET in production environment.

        Raises:
            RuntimeError: If WEBHOOK_SECRET is missing
        """
        if not cls._webhook_secret:
            raise RuntimeError(
                "CRITICAL: WEBHOOK_SECRET environment variable is not set!\n"
                "Order webhooks cannot be verified without it."
            )
        return cls._webhook_secret

    WEBHOOK_SECRET = _webhook_secret


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SECRET_KEY = 'testing-secret-key-with-enough-length-123'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WEBHOOK_SECRET = ''
    LOYALTY_POINTS_PER_UNIT = 1.0
    LOYALTY_FIRST_ORDER_BONUS = 2.0
    LOYALTY_MINIMUM_ORDER_VALUE = 5000
    LOYALTY_MAX_POINTS_PER_ORDER = 1000
    LOYALTY_CATEGORY_MULTIPLIERS = {'new-arrivals': 1.5, 'sale': 0.5}
    RETURN_WINDOW_DAYS = 14
    RETURN_POINTS_BONUS_PERCENT = 10


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
        ProductionConfig.validate_secret_key()
        ProductionConfig.validate_webhook_secret()
