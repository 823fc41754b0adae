from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://holding_admin:holding_secret_2026@db:5432/holding_db"
    JWT_SECRET: str = "holdingdash-jwt-secret-change-in-production-2026"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_MINUTES: int = 480
    CORS_ORIGINS: list[str] = ["http://localhost:3001", "http://localhost:5173"]

    # Fallback cross-rates used when a settings row is missing or unparsable
    DEFAULT_EUR_DZD: float = 140.0
    DEFAULT_USD_DZD: float = 133.0
    DEFAULT_AED_DZD: float = 36.0

    MARKET_RATE_URL: str = "https://www.dzairexchange.com/"
    MARKET_RATE_TIMEOUT_SECONDS: float = 15.0

    EXPENSE_REMINDER_LEAD_DAYS: int = 2
    EXPENSE_REMINDER_HOUR: int = 8

    # Reminder digests are emailed through Resend when a key and recipients are set
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com/emails"
    REMINDER_EMAIL_FROM: str = "HoldingDash <reminders@holdingdash.local>"
    REMINDER_EMAIL_TO: list[str] = []
    REMINDER_EMAIL_TIMEOUT_SECONDS: float = 15.0
    SCHEDULER_ENABLED: bool = True

    class Config:
        env_file = ".env"


settings = Settings()
