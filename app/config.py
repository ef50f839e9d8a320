from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Billing defaults
    DEFAULT_CURRENCY: str = "USD"
    BULK_PURCHASE_MAX_ITEMS: int = 20
    BULK_UNASSIGN_MAX_ITEMS: int = 50

    # Outbound email (notification dispatcher)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = False
    SMTP_START_TLS: bool = True
    SMTP_FROM_EMAIL: str = "support@example.com"
    COMPANY_NAME: str = "Your VoIP Company"
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0  # Upper bound on a single email send

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def smtp_configured(self) -> bool:
        """Whether an SMTP relay is available for notifications"""
        return bool(self.SMTP_HOST)


settings = Settings()
