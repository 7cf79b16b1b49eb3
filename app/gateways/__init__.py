"""Ödeme sağlayıcıları: ödemenin method alanı -> GatewayAdapter."""
from app.core.config import is_paypal_configured, is_stripe_configured, paypal_api_base, settings
from app.core.errors import GatewayNotConfigured
from app.gateways.base import GatewayAdapter, RemoteIntent, RemoteRefund, WebhookEvent
from app.gateways.paypal_gateway import PayPalGateway
from app.gateways.stripe_gateway import StripeGateway

__all__ = [
    "GatewayAdapter",
    "GatewayRegistry",
    "PayPalGateway",
    "RemoteIntent",
    "RemoteRefund",
    "StripeGateway",
    "WebhookEvent",
    "get_gateways",
]


class GatewayRegistry:
    """Yapılandırılmış sağlayıcılar. Eksik olan istenirse 503 (GatewayNotConfigured)."""

    def __init__(self, adapters: dict[str, GatewayAdapter]):
        self.adapters = dict(adapters)

    def get(self, method: str) -> GatewayAdapter:
        adapter = self.adapters.get((method or "").strip().lower())
        if adapter is None:
            raise GatewayNotConfigured(method=method)
        return adapter


def build_gateways() -> GatewayRegistry:
    adapters: dict[str, GatewayAdapter] = {}
    if is_stripe_configured():
        adapters["stripe"] = StripeGateway(
            settings.stripe_secret_key,
            settings.stripe_webhook_secret,
            timeout=settings.gateway_timeout_seconds,
        )
    if is_paypal_configured():
        adapters["paypal"] = PayPalGateway(
            settings.paypal_client_id,
            settings.paypal_client_secret,
            settings.paypal_webhook_id,
            paypal_api_base(),
            return_url=(settings.frontend_url or "").rstrip("/"),
            timeout=settings.gateway_timeout_seconds,
        )
    return GatewayRegistry(adapters)


def get_gateways() -> GatewayRegistry:
    """FastAPI dependency; testlerde dependency_overrides ile sahte sağlayıcı verilir."""
    return build_gateways()
