from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "Debt Sync Bot"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Telegram bot for tracking mirrored debts between users"

    # MongoDB
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "debtbot"
    RECORDS_COLLECTION: str = "user_records"

    # Telegram
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_WEBHOOK_SECRET: str = ""
    # public URL of POST /telegram/webhook; registered with Telegram on startup when set
    TELEGRAM_WEBHOOK_URL: str = ""

    # Debts
    SUPPORTED_CURRENCIES: List[str] = ["RUB", "KZT", "USD", "EUR"]
    DEFAULT_CURRENCY: str = "RUB"

    # Reminders
    REMINDER_CHECK_INTERVAL_SECONDS: int = 3600
    REMINDER_SNOOZE_DAYS: int = 1

    # Presentation
    DEBTS_PAGE_SIZE: int = 5
    HISTORY_PAGE_SIZE: int = 10

    # Conversation sessions
    SESSION_TTL_SECONDS: int = 1800

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
