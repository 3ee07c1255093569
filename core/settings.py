"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so provider credentials can be loaded
(and rotated) independently of the application settings.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator


class PaymentTimeouts(BaseModel):
    # Upper bound for one provider call, retries included
    total: float = 10.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class PaymentLimits(BaseModel):
    min_amount: Decimal = Decimal("0.50")
    max_amount: Decimal = Decimal("999999.99")


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: Optional[str] = None


class FakeProviderSettings(BaseModel):
    webhook_secret: str = "whsec_fake"


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="stripe", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    currency: str = Field(default="USD", validation_alias="PAYMENT__CURRENCY")
    limits: PaymentLimits = Field(default_factory=PaymentLimits)
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    stripe: StripeSettings = Field(default_factory=StripeSettings)
    fake: FakeProviderSettings = Field(default_factory=FakeProviderSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow",
        env_nested_delimiter="__",
        populate_by_name=True,
    )

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u


payment_settings = PaymentSettings()
