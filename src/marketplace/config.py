"""Engine settings read from the environment.

Protean's own configuration (providers, brokers, processing mode) lives in
``domain.toml`` next to the domain module. The values here are business and
provider settings: pricing rules, reconciliation tolerances, timeouts and
gateway credentials.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class MpesaSettings:
    environment: str = "sandbox"
    consumer_key: str = ""
    consumer_secret: str = ""
    shortcode: str = "174379"
    passkey: str = ""
    callback_url: str = ""
    callback_token: str = ""

    @property
    def base_url(self) -> str:
        if self.environment == "production":
            return "https://api.safaricom.co.ke"
        return "https://sandbox.safaricom.co.ke"

    @classmethod
    def from_env(cls) -> "MpesaSettings":
        return cls(
            environment=os.getenv("MPESA_ENVIRONMENT", "sandbox"),
            consumer_key=os.getenv("MPESA_CONSUMER_KEY", ""),
            consumer_secret=os.getenv("MPESA_CONSUMER_SECRET", ""),
            shortcode=os.getenv("MPESA_SHORTCODE", "174379"),
            passkey=os.getenv("MPESA_PASSKEY", ""),
            callback_url=os.getenv("MPESA_CALLBACK_URL", ""),
            callback_token=os.getenv("MPESA_CALLBACK_TOKEN", ""),
        )


@dataclass(frozen=True)
class StripeSettings:
    secret_key: str = ""
    webhook_secret: str = ""

    @classmethod
    def from_env(cls) -> "StripeSettings":
        return cls(
            secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        )


@dataclass(frozen=True)
class PayPalSettings:
    mode: str = "sandbox"
    client_id: str = ""
    client_secret: str = ""
    webhook_id: str = ""

    @property
    def base_url(self) -> str:
        if self.mode == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    @classmethod
    def from_env(cls) -> "PayPalSettings":
        return cls(
            mode=os.getenv("PAYPAL_MODE", "sandbox"),
            client_id=os.getenv("PAYPAL_CLIENT_ID", ""),
            client_secret=os.getenv("PAYPAL_CLIENT_SECRET", ""),
            webhook_id=os.getenv("PAYPAL_WEBHOOK_ID", ""),
        )


@dataclass(frozen=True)
class Settings:
    """Marketplace settings. Build with ``Settings.from_env()``."""

    currency: str = "KES"
    tax_rate: float = 0.16
    shipping_standard: float = 500.0
    shipping_express: float = 1000.0
    free_shipping_threshold: float = 5000.0
    max_order_total: float = 150000.0
    default_commission_rate: float = 10.0
    amount_tolerance: float = 1.0
    payment_timeout_minutes: int = 15
    sweep_interval_seconds: int = 60
    initiation_max_attempts: int = 3
    initiation_base_delay: float = 1.0
    provider_timeout: float = 30.0
    receipt_retention_days: int = 30
    delivery_days: int = 7
    gateway_mode: str = "fake"
    mpesa: MpesaSettings = field(default_factory=MpesaSettings)
    stripe: StripeSettings = field(default_factory=StripeSettings)
    paypal: PayPalSettings = field(default_factory=PayPalSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            currency=os.getenv("MARKETPLACE_CURRENCY", "KES"),
            tax_rate=_env_float("MARKETPLACE_TAX_RATE", 0.16),
            shipping_standard=_env_float("MARKETPLACE_SHIPPING_STANDARD", 500.0),
            shipping_express=_env_float("MARKETPLACE_SHIPPING_EXPRESS", 1000.0),
            free_shipping_threshold=_env_float("MARKETPLACE_FREE_SHIPPING_THRESHOLD", 5000.0),
            max_order_total=_env_float("MARKETPLACE_MAX_ORDER_TOTAL", 150000.0),
            default_commission_rate=_env_float("MARKETPLACE_DEFAULT_COMMISSION_RATE", 10.0),
            amount_tolerance=_env_float("MARKETPLACE_AMOUNT_TOLERANCE", 1.0),
            payment_timeout_minutes=_env_int("MARKETPLACE_PAYMENT_TIMEOUT_MINUTES", 15),
            sweep_interval_seconds=_env_int("MARKETPLACE_SWEEP_INTERVAL_SECONDS", 60),
            initiation_max_attempts=_env_int("MARKETPLACE_INITIATION_MAX_ATTEMPTS", 3),
            initiation_base_delay=_env_float("MARKETPLACE_INITIATION_BASE_DELAY", 1.0),
            provider_timeout=_env_float("MARKETPLACE_PROVIDER_TIMEOUT", 30.0),
            receipt_retention_days=_env_int("MARKETPLACE_RECEIPT_RETENTION_DAYS", 30),
            delivery_days=_env_int("MARKETPLACE_DELIVERY_DAYS", 7),
            gateway_mode=os.getenv("MARKETPLACE_GATEWAY_MODE", "fake"),
            mpesa=MpesaSettings.from_env(),
            stripe=StripeSettings.from_env(),
            paypal=PayPalSettings.from_env(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
