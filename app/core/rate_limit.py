"""IP bazlı rate limiting (SlowAPI). Limit metinleri ayarlardan üretilir."""
from fastapi import Request
from slowapi import Limiter

from app.core.config import settings

# Sipariş ve ödeme niyeti oluşturma
CHECKOUT_LIMIT = f"{settings.rate_limit_checkout_per_minute}/minute"
# Kupon denemesi gibi diğer müşteri uçları
GENERAL_LIMIT = f"{settings.rate_limit_per_minute}/minute"


def client_ip_key(request: Request) -> str:
    """X-Forwarded-For varsa ilk değer, yoksa bağlantı adresi."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


limiter = Limiter(key_func=client_ip_key)
