"""
PayPal REST: Orders v2 (intent=CAPTURE), webhook doğrulama API'si, capture iadesi.
Alıcı onayından sonra capture istemci tarafında yapılır; tahsilat PAYMENT.CAPTURE.COMPLETED ile kesinleşir.
"""
import base64
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request as UrlRequest, urlopen

from app.core.errors import GatewayError, ValidationFailed
from app.gateways.base import (
    EVENT_CAPTURED,
    EVENT_FAILED,
    EVENT_IGNORED,
    GatewayAdapter,
    RemoteIntent,
    RemoteRefund,
    WebhookEvent,
    lower_headers,
    parse_order_id,
)

log = logging.getLogger("dijipazar.gateway.paypal")

# PayPal doğrulama API'sinin beklediği başlıklar
TRANSMISSION_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-transmission-sig",
    "paypal-cert-url",
    "paypal-auth-algo",
)

# Ondalık basamak kullanmayan para birimleri
ZERO_DECIMAL_CURRENCIES = frozenset({"HUF", "JPY", "TWD"})

_REFUND_STATUS = {
    "COMPLETED": "succeeded",
    "PENDING": "pending",
    "FAILED": "failed",
    "CANCELLED": "failed",
}


def minor_to_value(amount_minor: int, currency: str) -> str:
    """1999 -> '19.99' (JPY gibi kuruşsuz birimlerde '1999')."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return str(int(amount_minor))
    return str((Decimal(int(amount_minor)) / 100).quantize(Decimal("0.01")))


def value_to_minor(value, currency: str) -> int | None:
    """'19.99' -> 1999. Float kullanılmaz."""
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount)
    return int((amount * 100).to_integral_value())


class PayPalGateway(GatewayAdapter):
    name = "paypal"
    signature_error_status = 401

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        webhook_id: str,
        api_base: str,
        return_url: str = "",
        timeout: float = 20.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_secret = webhook_id
        self.api_base = api_base.rstrip("/")
        self.return_url = return_url
        self.timeout = timeout

    def _access_token(self) -> str:
        basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        req = UrlRequest(
            f"{self.api_base}/v1/oauth2/token",
            data=urlencode({"grant_type": "client_credentials"}).encode(),
            method="POST",
            headers={"Authorization": f"Basic {basic}", "Content-Type": "application/x-www-form-urlencoded"},
        )
        result = self._send(req)
        token = result.get("access_token")
        if not token:
            raise GatewayError("PayPal erişim anahtarı alınamadı.", gateway=self.name)
        return token

    def _send(self, req: UrlRequest) -> dict:
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode()
        except HTTPError as e:
            detail = e.read().decode(errors="replace")[:200] if e.fp else ""
            log.warning("PayPal HTTP %s on %s: %s", e.code, req.full_url, detail)
            raise GatewayError(f"PayPal hatası: HTTP {e.code}", gateway=self.name)
        except (URLError, TimeoutError, OSError) as e:
            log.warning("PayPal connection failed on %s: %s", req.full_url, e)
            raise GatewayError(f"PayPal bağlantı hatası: {str(e)[:80]}", gateway=self.name)
        try:
            return json.loads(body) if body else {}
        except ValueError:
            raise GatewayError("PayPal yanıtı okunamadı.", gateway=self.name)

    def _call(self, method: str, path: str, payload: dict | None = None, request_id: str | None = None) -> dict:
        headers = {"Authorization": f"Bearer {self._access_token()}", "Content-Type": "application/json"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        req = UrlRequest(
            f"{self.api_base}{path}",
            data=json.dumps(payload).encode() if payload is not None else None,
            method=method,
            headers=headers,
        )
        return self._send(req)

    def create_remote_intent(self, amount_minor, currency, correlation_id, metadata=None):
        currency_code = currency.upper()
        purchase_unit = {
            "custom_id": correlation_id,
            "invoice_id": correlation_id,
            "amount": {"currency_code": currency_code, "value": minor_to_value(amount_minor, currency_code)},
        }
        if metadata and metadata.get("order_id") is not None:
            purchase_unit["reference_id"] = str(metadata["order_id"])
        payload = {"intent": "CAPTURE", "purchase_units": [purchase_unit]}
        if self.return_url:
            payload["application_context"] = {
                "return_url": f"{self.return_url}/checkout/success",
                "cancel_url": f"{self.return_url}/checkout/cancel",
            }
        result = self._call("POST", "/v2/checkout/orders", payload, request_id=f"order-{correlation_id}")
        remote_id = result.get("id")
        if not remote_id:
            raise GatewayError("PayPal sipariş kimliği dönmedi.", gateway=self.name)
        approval_url = next(
            (link.get("href") for link in result.get("links") or [] if link.get("rel") in ("approve", "payer-action")),
            None,
        )
        return RemoteIntent(remote_id=remote_id, client_secret_or_approval_url=approval_url)

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str], secret: str) -> bool:
        """PayPal'ın verify-webhook-signature API'si; secret = webhook id."""
        h = lower_headers(headers)
        if not secret or not all(h.get(name) for name in TRANSMISSION_HEADERS):
            return False
        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return False
        payload = {
            "auth_algo": h["paypal-auth-algo"],
            "cert_url": h["paypal-cert-url"],
            "transmission_id": h["paypal-transmission-id"],
            "transmission_sig": h["paypal-transmission-sig"],
            "transmission_time": h["paypal-transmission-time"],
            "webhook_id": secret,
            "webhook_event": event,
        }
        result = self._call("POST", "/v1/notifications/verify-webhook-signature", payload)
        return result.get("verification_status") == "SUCCESS"

    def create_remote_refund(self, remote_charge_id, amount_minor, currency, reason=None):
        currency_code = currency.upper()
        payload = {"amount": {"currency_code": currency_code, "value": minor_to_value(amount_minor, currency_code)}}
        if reason:
            payload["note_to_payer"] = reason[:255]
        result = self._call(
            "POST",
            f"/v2/payments/captures/{remote_charge_id}/refund",
            payload,
            request_id=f"refund-{remote_charge_id}-{amount_minor}",
        )
        return RemoteRefund(
            remote_refund_id=result.get("id"),
            status=_REFUND_STATUS.get((result.get("status") or "").upper(), "pending"),
        )

    def parse_event(self, raw_body: bytes) -> WebhookEvent:
        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationFailed("Webhook gövdesi okunamadı.")
        event_type = event.get("event_type") or ""
        resource = event.get("resource") or {}
        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            kind = EVENT_CAPTURED
        elif event_type == "PAYMENT.CAPTURE.DENIED":
            kind = EVENT_FAILED
        else:
            return WebhookEvent(kind=EVENT_IGNORED, event_type=event_type, raw=event)
        amount = resource.get("amount") or {}
        currency = (amount.get("currency_code") or "").upper()
        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        return WebhookEvent(
            kind=kind,
            event_type=event_type,
            transaction_number=resource.get("custom_id") or resource.get("invoice_id") or None,
            order_id=parse_order_id(resource.get("reference_id")),
            external_id=resource.get("id"),
            remote_order_id=related.get("order_id"),
            amount_minor=value_to_minor(amount.get("value"), currency),
            currency=currency.lower() or None,
            raw=event,
        )
