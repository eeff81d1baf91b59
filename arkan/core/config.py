"""
Arkan PMS Application Configuration
Loads settings from .env file using Pydantic v2 with BaseSettings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ==================== Project Info ====================
    PROJECT_NAME: str = "Arkan PMS API"
    PROJECT_DESCRIPTION: str = "Multi-tenant property management core: isolation, finance, automation"
    VERSION: str = "1.0.0"

    # ==================== Database ====================
    DATABASE_URL: str = "sqlite:///arkan_local.db"

    # ==================== Security & Authentication ====================
    SECRET_KEY: str = "change-this-secret-key-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ==================== Financial Policy Defaults ====================
    # Tenant settings override these per company
    GRACE_PERIOD_DAYS: int = 7
    ESCALATION_INTERVAL_DAYS: int = 7
    SEVERE_OVERDUE_DAYS: int = 30
    HEALTH_WINDOW_DAYS: int = 30
    COLLECTION_RATE_FLOOR: float = 0.8
    OVERDUE_PERCENTAGE_CEILING: float = 0.2
    SLOW_PAYMENT_DAYS: int = 14
    FORECAST_HORIZON_MONTHS: int = 6
    DEFAULT_CURRENCY: str = "SAR"
    DEFAULT_LOCALE: str = "ar"

    # ==================== Notification Automation ====================
    CONTRACT_EXPIRY_LOOKAHEAD_DAYS: int = 30
    ESCALATION_NOTIFY_MIN_LEVEL: int = 2
    DEDUP_WINDOW_HOURS: int = 24
    SWEEP_TENANT_TIMEOUT_SECONDS: float = 30.0

    # ==================== Audit ====================
    AUDIT_FALLBACK_BUFFER_SIZE: int = 1000

    # ==================== Delivery Worker ====================
    SMTP_SERVER: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAIL_FROM: str = "noreply@arkan-pms.com"
    WHATSAPP_API_URL: str = "https://graph.facebook.com/v19.0"
    WHATSAPP_TOKEN: str = ""
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    DELIVERY_MAX_ATTEMPTS: int = 5

    # ==================== Features ====================
    DEBUG: bool = False
    TESTING: bool = False
    LOG_LEVEL: str = "INFO"

    # ==================== Configuration Loading ====================
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",
        validate_default=True,
    )

    # ==================== Properties ====================
    @property
    def email_configured(self) -> bool:
        """Check if SMTP delivery is configured"""
        return bool(self.SMTP_SERVER and self.SMTP_USER and self.SMTP_PASSWORD)

    @property
    def whatsapp_configured(self) -> bool:
        """Check if WhatsApp Cloud API delivery is configured"""
        return bool(self.WHATSAPP_TOKEN and self.WHATSAPP_PHONE_NUMBER_ID)


# ==================== Settings Singleton ====================
@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Create default settings instance
settings = get_settings()


def is_testing() -> bool:
    """Check if running in testing mode"""
    return settings.TESTING
