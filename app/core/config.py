from decimal import Decimal
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Calendar dates for payroll are always taken in this timezone (UTC+3 business hours)
    business_timezone: str = Field("Africa/Addis_Ababa", alias="BUSINESS_TIMEZONE")
    default_absence_amount: Decimal = Field(Decimal("25"), alias="DEFAULT_ABSENCE_AMOUNT")
    default_lateness_amount: Decimal = Field(Decimal("30"), alias="DEFAULT_LATENESS_AMOUNT")

    stripe_secret_key: Optional[str] = Field(None, alias="STRIPE_SECRET_KEY")
    stripe_api_base: str = Field("https://api.stripe.com/v1", alias="STRIPE_API_BASE")
    stripe_timeout_seconds: float = Field(10.0, alias="STRIPE_TIMEOUT_SECONDS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
