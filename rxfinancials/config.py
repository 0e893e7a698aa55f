import os


def normalize_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql://", 1)
    return raw_url


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-unsafe-key")
    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.getenv("DATABASE_URL", "sqlite:///instance/rxfinancials.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }
    CACHE_TYPE = os.getenv("CACHE_TYPE", "SimpleCache")
    CACHE_DEFAULT_TIMEOUT = int(os.getenv("CACHE_DEFAULT_TIMEOUT", "60"))
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "1000 per day;200 per hour")
    RATELIMIT_ENABLED = os.getenv("RATELIMIT_ENABLED", "true").lower() == "true"

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    SENTRY_DSN = os.getenv("SENTRY_DSN")
    FINANCIALS_API_TOKEN = os.getenv("FINANCIALS_API_TOKEN")

    # Amounts are integer minor units (cents); percentages are fractions.
    PLATFORM_FEE_PERCENT = os.getenv("PLATFORM_FEE_PERCENT", "0.10")
    PROCESSOR_PERCENT_FEE = os.getenv("PROCESSOR_PERCENT_FEE", "0.029")
    PROCESSOR_FIXED_FEE_CENTS = int(os.getenv("PROCESSOR_FIXED_FEE_CENTS", "30"))
    CLINICIAN_SHARE_PERCENT = os.getenv("CLINICIAN_SHARE_PERCENT", "0.70")
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "usd")

    PAYOUT_HOLD_HOURS = int(os.getenv("PAYOUT_HOLD_HOURS", "336"))
    PAYOUT_MIN_HOLD_HOURS = int(os.getenv("PAYOUT_MIN_HOLD_HOURS", "168"))
    PAYOUT_HIGH_RISK_HOLD_HOURS = int(os.getenv("PAYOUT_HIGH_RISK_HOLD_HOURS", "720"))
    PAYOUT_MAX_RETRIES = int(os.getenv("PAYOUT_MAX_RETRIES", "3"))
    PAYOUT_SIM_FAILURE_RATE = float(os.getenv("PAYOUT_SIM_FAILURE_RATE", "0"))
    NEXT_PAYOUT_DAYS = int(os.getenv("NEXT_PAYOUT_DAYS", "7"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class ProductionConfig(BaseConfig):
    DEBUG = False
    TESTING = False


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    CACHE_TYPE = "NullCache"
    RATELIMIT_ENABLED = False
    FINANCIALS_API_TOKEN = "test-token"
    PAYOUT_SIM_FAILURE_RATE = 0.0


config_by_env = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
