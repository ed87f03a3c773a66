from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Turnstile API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    # start_api.py
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_WORKERS: int = 1
    SEED_ON_START: bool = True

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    PUBLIC_BASE_URL: str = "http://localhost:8000"  # retrieval links in notifications

    # Payment provider
    PAYMENT_PROVIDER: str = "unicobros"  # unicobros|mercadopago
    PROVIDER_TIMEOUT_SECONDS: int = 15
    UNICOBROS_BASE_URL: str = "https://api.unicobros.com.ar"
    UNICOBROS_API_KEY: str = ""
    UNICOBROS_ACCESS_TOKEN: str = ""
    MERCADOPAGO_BASE_URL: str = "https://api.mercadopago.com"
    MERCADOPAGO_ACCESS_TOKEN: str = ""

    # Push notifications from the provider
    WEBHOOK_VERIFY: bool = False
    WEBHOOK_SECRET: str = ""

    # Burst filter in front of the ledger (memory|redis)
    DEDUP_BACKEND: str = "memory"
    DEDUP_TTL_SECONDS: int = 300
    DEDUP_MAX_ENTRIES: int = 500
    DEDUP_MAX_AGE_SECONDS: int = 3600

    # Buyer poll
    POLL_MAX_ATTEMPTS: int = 40
    POLL_BUDGET_SECONDS: float = 120.0
    POLL_INTERVAL_SECONDS: float = 3.0
    POLL_RATE_LIMIT: int = 20
    POLL_RATE_WINDOW_SECONDS: int = 300
    POLL_IN_BACKGROUND: bool = True

    # Periodic sweep of PENDING orders
    CRON_SECRET: str = ""
    SWEEP_GRACE_SECONDS: int = 120
    SWEEP_MAX_AGE_HOURS: int = 24
    SWEEP_BATCH_SIZE: int = 20
    SWEEP_PAUSE_SECONDS: float = 0.5
    SWEEP_INTERVAL_SECONDS: float = 300.0

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "tickets@turnstile.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    # Twilio WhatsApp (content template must be approved before it can be used)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_WHATSAPP_FROM: str = ""
    TWILIO_CONTENT_SID: str = ""
    DEFAULT_PHONE_PREFIX: str = "+54"

    # Event defaults, overridable through the settings table
    EVENT_NAME: str = "Carnival 2026"
    EVENT_DATE: str = "February 2026"
    EVENT_LOCATION: str = ""


settings = Settings()
