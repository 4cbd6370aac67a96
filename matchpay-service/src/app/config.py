import os
from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    MATCHPAY_DB_USER: str      = os.getenv("MATCHPAY_DB_USER", "")
    MATCHPAY_DB_PASSWORD: str  = os.getenv("MATCHPAY_DB_PASSWORD", "")
    MATCHPAY_DB_NAME: str      = os.getenv("MATCHPAY_DB_NAME", "")
    MATCHPAY_DB_HOST: str      = os.getenv("MATCHPAY_DB_HOST", "")
    MATCHPAY_DB_PORT: int      = int(os.getenv("MATCHPAY_DB_PORT", "5432"))
    MATCHPAY_DATABASE_URL: str = os.getenv("MATCHPAY_DATABASE_URL", "")

    RABBIT_USER: str           = os.getenv("RABBIT_USER", "")
    RABBIT_PASSWORD: str       = os.getenv("RABBIT_PASSWORD", "")
    RABBIT_HOST: str           = os.getenv("RABBIT_HOST", "")
    RABBIT_PORT: int           = int(os.getenv("RABBIT_PORT",  "5672"))

    OUTBOX_POLL_INTERVAL: int  = int(os.getenv("OUTBOX_POLL_INTERVAL", "1"))

    FLUTTERWAVE_BASE_URL: str     = os.getenv("FLUTTERWAVE_BASE_URL", "https://api.flutterwave.com")
    FLUTTERWAVE_SECRET_KEY: str   = os.getenv("FLUTTERWAVE_SECRET_KEY", "")
    FLUTTERWAVE_WEBHOOK_HASH: str = os.getenv("FLUTTERWAVE_WEBHOOK_HASH", "")
    PROVIDER_TIMEOUT: float       = float(os.getenv("PROVIDER_TIMEOUT", "15"))

    OPERATOR_API_KEY: str      = os.getenv("OPERATOR_API_KEY", "")

    # Fee split is fixed; never taken from the request
    SWIPE_PRICE: Decimal       = Decimal(os.getenv("SWIPE_PRICE", "500"))
    PLATFORM_FEE: Decimal      = Decimal(os.getenv("PLATFORM_FEE", "250"))
    RECIPIENT_EARNING: Decimal = Decimal(os.getenv("RECIPIENT_EARNING", "250"))
    CURRENCY: str              = os.getenv("CURRENCY", "NGN")

    DEFAULT_FREE_SWIPES: int   = int(os.getenv("DEFAULT_FREE_SWIPES", "3"))
    QUOTA_BOUND_GENDER: str    = os.getenv("QUOTA_BOUND_GENDER", "male")
    MIN_WITHDRAWAL: Decimal    = Decimal(os.getenv("MIN_WITHDRAWAL", "100"))
    DISCOVER_LIMIT: int        = int(os.getenv("DISCOVER_LIMIT", "50"))

    @property
    def database_url(self) -> str:
        if self.MATCHPAY_DATABASE_URL:
            return self.MATCHPAY_DATABASE_URL
        return (
            f"postgresql+asyncpg://"
            f"{self.MATCHPAY_DB_USER}:"
            f"{self.MATCHPAY_DB_PASSWORD}"
            f"@{self.MATCHPAY_DB_HOST}:"
            f"{self.MATCHPAY_DB_PORT}/"
            f"{self.MATCHPAY_DB_NAME}"
        )

    @property
    def rabbit_url(self) -> str:
        return f"amqp://{self.RABBIT_USER}:{self.RABBIT_PASSWORD}@{self.RABBIT_HOST}:{self.RABBIT_PORT}/"

settings = Settings()
