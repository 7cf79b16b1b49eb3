"""Stripe: PaymentIntent + imzalı webhook (Stripe-Signature) + Refund."""
import json
import logging
from typing import Mapping

import stripe

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

log = logging.getLogger("dijipazar.gateway.stripe")

# Stripe refund.status -> iade kaydı durumu
_REFUND_STATUS = {
    "succeeded": "succeeded",
    "pending": "pending",
    "requires_action": "pending",
    "failed": "failed",
    "canceled": "failed",
}


class StripeGateway(GatewayAdapter):
    name = "stripe"
    signature_error_status = 400

    def __init__(self, secret_key: str, webhook_secret: str, timeout: float = 20.0):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    def create_remote_intent(self, amount_minor, currency, correlation_id, metadata=None):
        meta = {k: str(v) for k, v in (metadata or {}).items()}
        meta["transaction_number"] = correlation_id
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency.lower(),
                metadata=meta,
                automatic_payment_methods={"enabled": True},
                idempotency_key=f"intent-{correlation_id}",
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            log.warning("Stripe PaymentIntent failed: txn=%s err=%s", correlation_id, e)
            raise GatewayError(f"Stripe hatası: {str(e)[:120]}", gateway=self.name)
        return RemoteIntent(remote_id=intent.id, client_secret_or_approval_url=intent.client_secret)

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str], secret: str) -> bool:
        sig_header = lower_headers(headers).get("stripe-signature", "")
        if not sig_header or not secret:
            return False
        try:
            payload = raw_body.decode("utf-8")
            return bool(stripe.WebhookSignature.verify_header(payload, sig_header, secret))
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            log.warning("Stripe signature rejected: %s", e)
            return False

    def create_remote_refund(self, remote_charge_id, amount_minor, currency, reason=None):
        try:
            refund = stripe.Refund.create(
                payment_intent=remote_charge_id,
                amount=amount_minor,
                reason="requested_by_customer",
                metadata={"reason": (reason or "")[:450]},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            log.warning("Stripe refund failed: pi=%s err=%s", remote_charge_id, e)
            raise GatewayError(f"Stripe iade hatası: {str(e)[:120]}", gateway=self.name)
        return RemoteRefund(remote_refund_id=refund.id, status=_REFUND_STATUS.get(refund.status, "pending"))

    def parse_event(self, raw_body: bytes) -> WebhookEvent:
        try:
            event = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationFailed("Webhook gövdesi okunamadı.")
        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        if event_type == "payment_intent.succeeded":
            kind = EVENT_CAPTURED
        elif event_type == "payment_intent.payment_failed":
            kind = EVENT_FAILED
        else:
            return WebhookEvent(kind=EVENT_IGNORED, event_type=event_type, raw=event)
        amount = obj.get("amount_received")
        if amount is None:
            amount = obj.get("amount")
        return WebhookEvent(
            kind=kind,
            event_type=event_type,
            transaction_number=metadata.get("transaction_number") or None,
            order_id=parse_order_id(metadata.get("order_id")),
            external_id=obj.get("id"),
            remote_order_id=obj.get("id"),
            amount_minor=int(amount) if amount is not None else None,
            currency=(obj.get("currency") or "").lower() or None,
            raw=event,
        )
