"""
Automation Configuration

Environment-driven settings for the automation engine, validated once at
startup with Pydantic Settings. Values come from the process environment and
an optional .env file; unknown variables are ignored.
"""
import logging
import re
from typing import FrozenSet, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class AutomationSettings(BaseSettings):
    """Validated automation engine configuration."""

    # Record store / settings service
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    # SMS channel (Twilio)
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None

    # Email channel (SMTP)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: str = "noreply@clinic.local"
    SMTP_FROM_NAME: str = "Clinic"
    SMTP_USE_TLS: bool = True

    # Message rendering
    APP_BASE_URL: str = "http://localhost:3000"
    CLINIC_NAME: str = "Our Clinic"

    # Engine
    SCHEDULER_TIMEZONE: str = "UTC"
    MAX_CONCURRENT_TENANTS: int = 4
    CHANNEL_TIMEOUT_SECONDS: float = 15.0
    STORE_TIMEOUT_SECONDS: float = 30.0
    ONE_SHOT_POOL_SIZE: int = 4
    DISABLED_AUTOMATIONS: str = ""
    SLACK_OPS_WEBHOOK_URL: Optional[str] = None

    # Business defaults
    INVOICE_PREFIX: str = "INV"
    APPOINTMENT_CODE_PREFIX: str = "APT"
    DEFAULT_CONSULTATION_FEE: float = 500.0
    TAX_RATE_PERCENT: float = 0.0
    DEFAULT_PHONE_COUNTRY_CODE: str = "+1"
    NO_SHOW_GRACE_MINUTES: int = 60
    SMART_ASSIGNMENT_BATCH_LIMIT: int = 50
    FOLLOWUP_DEFAULT_TIME: str = "09:00"

    @field_validator('MAX_CONCURRENT_TENANTS', 'ONE_SHOT_POOL_SIZE', 'SMART_ASSIGNMENT_BATCH_LIMIT')
    @classmethod
    def validate_positive_int(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator('CHANNEL_TIMEOUT_SECONDS', 'STORE_TIMEOUT_SECONDS')
    @classmethod
    def validate_timeout(cls, v: float, info) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator('NO_SHOW_GRACE_MINUTES', 'DEFAULT_CONSULTATION_FEE', 'TAX_RATE_PERCENT')
    @classmethod
    def validate_non_negative(cls, v, info):
        if v < 0:
            raise ValueError(f"{info.field_name} cannot be negative")
        return v

    @field_validator('FOLLOWUP_DEFAULT_TIME')
    @classmethod
    def validate_time_of_day(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError("FOLLOWUP_DEFAULT_TIME must be HH:MM")
        return v

    @property
    def disabled_automations(self) -> FrozenSet[str]:
        return frozenset(key.strip() for key in self.DISABLED_AUTOMATIONS.split(",") if key.strip())

    @property
    def sms_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)

    @property
    def email_configured(self) -> bool:
        return bool(self.SMTP_HOST)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


_settings: Optional[AutomationSettings] = None


def get_settings() -> AutomationSettings:
    """Get the process-wide settings instance (created on first use)."""
    global _settings
    if _settings is None:
        _settings = AutomationSettings()
        logger.info(
            f"Automation settings loaded: sms={_settings.sms_configured}, "
            f"email={_settings.email_configured}, supabase={_settings.supabase_configured}, "
            f"max_concurrent_tenants={_settings.MAX_CONCURRENT_TENANTS}"
        )
    return _settings


def reload_settings() -> AutomationSettings:
    """Rebuild settings from the environment (tests / operators)."""
    global _settings
    _settings = None
    return get_settings()
