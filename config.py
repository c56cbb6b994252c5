"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    JSON_SORT_KEYS = False

    # Bearer tokens (HS256 JWT, `sub` = user id)
    JWT_SECRET = os.getenv('JWT_SECRET') or SECRET_KEY
    JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'storefront')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'storefront')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'storefront')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', '0') == '1'

    # Pricing
    TAX_RATE = os.getenv('TAX_RATE', '0.08')
    FREE_SHIPPING_THRESHOLD = os.getenv('FREE_SHIPPING_THRESHOLD', '200')
    FLAT_SHIPPING_FEE = os.getenv('FLAT_SHIPPING_FEE', '15')

    # MoMo wallet gateway
    MOMO_PARTNER_CODE = os.getenv('MOMO_PARTNER_CODE')
    MOMO_ACCESS_KEY = os.getenv('MOMO_ACCESS_KEY')
    MOMO_SECRET_KEY = os.getenv('MOMO_SECRET_KEY')
    MOMO_PARTNER_NAME = os.getenv('MOMO_PARTNER_NAME', 'Storefront')
    MOMO_STORE_ID = os.getenv('MOMO_STORE_ID', 'Storefront')
    MOMO_ENDPOINT = os.getenv('MOMO_ENDPOINT', 'https://test-payment.momo.vn')
    MOMO_CREATE_PATH = os.getenv('MOMO_CREATE_PATH', '/v2/gateway/api/create')
    MOMO_QUERY_PATH = os.getenv('MOMO_QUERY_PATH', '/v2/gateway/api/query')
    MOMO_REFUND_PATH = os.getenv('MOMO_REFUND_PATH', '/v2/gateway/api/refund')
    MOMO_REDIRECT_URL = os.getenv('MOMO_REDIRECT_URL', 'http://localhost:3000/checkout/result')
    MOMO_IPN_URL = os.getenv('MOMO_IPN_URL', 'http://localhost:5000/api/payments/momo/ipn')
    MOMO_TIMEOUT = int(os.getenv('MOMO_TIMEOUT', '15'))

    # Error tracking
    SENTRY_DSN = os.getenv('SENTRY_DSN')


class TestConfig(Config):
    """Configuration for the test suite (in-memory SQLite, fixed secrets)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SECRET_KEY = 'test-secret-key'
    JWT_SECRET = 'test-jwt-secret-with-at-least-32-bytes!'
    JWT_ALGORITHM = 'HS256'

    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False

    TAX_RATE = '0.08'
    FREE_SHIPPING_THRESHOLD = '200'
    FLAT_SHIPPING_FEE = '15'

    MOMO_PARTNER_CODE = 'MOMOTEST'
    MOMO_ACCESS_KEY = 'test-access-key'
    MOMO_SECRET_KEY = 'test-secret'
    MOMO_ENDPOINT = 'https://momo.test'
    MOMO_REDIRECT_URL = 'https://shop.test/checkout/result'
    MOMO_IPN_URL = 'https://shop.test/api/payments/momo/ipn'
    MOMO_TIMEOUT = 5

    SENTRY_DSN = None
