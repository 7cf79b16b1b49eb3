from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env proje kökünde: app/core/config.py -> app/core -> app -> proje kökü
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

PAYPAL_API_BASES = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./dijipazar.db"
    # CORS: virgülle ayrılmış origin listesi; production'da https://alandiniz.com
    cors_origins: str = "*"
    # IP başına dakikada max istek (genel)
    rate_limit_per_minute: int = 60
    # Sipariş oluşturma ve ödeme niyeti için ayrı limit
    rate_limit_checkout_per_minute: int = 20
    admin_secret: str = ""             # Admin API: X-Admin-Secret header
    environment: str = "development"   # production | development
    default_currency: str = "usd"      # ISO 4217, küçük harf (Stripe formatı)
    # Stripe (gateway A): PaymentIntent + imzalı webhook
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""    # whsec_...
    # PayPal (gateway B): Orders v2 + webhook doğrulama API'si
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_webhook_id: str = ""
    paypal_environment: str = "sandbox"  # sandbox | live
    gateway_timeout_seconds: float = 20.0
    # Ödeme sonrası müşteri yönlendirme adresi (PayPal return/cancel URL)
    frontend_url: str = "http://127.0.0.1:3000"
    # Dijital dosya indirme linkleri
    download_link_ttl_hours: int = 72
    download_max_count: int | None = 5
    # E-posta (sipariş onayı): SMTP
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@dijipazar.com"
    smtp_from_name: str = "Dijipazar"
    smtp_use_tls: bool = True

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("stripe_secret_key", "stripe_webhook_secret", "paypal_client_id", "paypal_client_secret", mode="before")
    @classmethod
    def strip_secret(cls, v: str | None) -> str:
        """Boşluk/yanlış kopya kaynaklı hataları azaltır."""
        return (v or "").strip()

    @field_validator("default_currency", mode="before")
    @classmethod
    def lower_currency(cls, v: str | None) -> str:
        return (v or "usd").strip().lower()


settings = Settings()


def is_stripe_configured() -> bool:
    return bool(settings.stripe_secret_key and settings.stripe_webhook_secret)


def is_paypal_configured() -> bool:
    return bool(settings.paypal_client_id and settings.paypal_client_secret and settings.paypal_webhook_id)


def paypal_api_base() -> str:
    return PAYPAL_API_BASES.get((settings.paypal_environment or "").strip().lower(), PAYPAL_API_BASES["sandbox"])
