"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (links in notification emails)
    FRONTEND_URL: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (HTTP requests per minute)
    RATE_LIMIT_API: int = 60
    REDIS_URL: str = "redis://localhost:6379/0"

    # Chat channel gate
    MESSAGE_BUDGET: int = 5  # Unsupervised messages per approval window
    MESSAGE_MAX_LENGTH: int = 1000

    # Per-identity realtime event throttling
    CHAT_RATE_LIMIT_EVENTS: int = 10
    CHAT_RATE_LIMIT_WINDOW_SECONDS: int = 60
    CHAT_RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Conversation history
    HISTORY_PAGE_SIZE: int = 20

    # Alias numbering (FNB001, INV014, ...)
    ALIAS_SEQUENCE_WIDTH: int = 3

    # Notification providers (dry run when unset)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@dealbridge.example"
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM_NUMBER: str = ""

    # Worker
    WORKER_POLL_INTERVAL: int = 10
    WORKER_BATCH_SIZE: int = 10
    # Failed notification jobs wait base * 2^(attempt-1) seconds before retrying
    WORKER_RETRY_BASE_SECONDS: int = 30

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
