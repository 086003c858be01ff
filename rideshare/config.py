from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "rideshare-history"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    REDIS_URL: str = "redis://localhost:6379/0"
    SECRET_KEY: str = "replace-me"
    # JWT / auth settings
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    SENTRY_DSN: str = ""
    # Record store key path roots
    HISTORY_ROOT: str = "history"
    TRIPS_ROOT: str = "trips"
    DRIVERS_ROOT: str = "drivers"
    # Cancellation rules
    CANCELLATION_WINDOW_MINUTES: int = 15
    # "all-or-nothing" or "per-booking"
    REFUND_POLICY: str = "all-or-nothing"
    ATOMIC_UPDATE_MAX_RETRIES: int = 25
    DISPLAY_TIMEZONE: str = "Asia/Amman"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
