"""
Ödeme akışı: niyet oluşturma, webhook ile tahsilat + teslimat, iade.
Tahsil edilen tutar her adımda siparişten yeniden hesaplanır; istemciden veya olaydan gelen tutara güvenilmez.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Mapping

from sqlmodel import Session

from app.core.errors import (
    AlreadyRefunded,
    AmountMismatch,
    GatewayError,
    InvalidState,
    OrderNotPending,
    OrderNotRefundable,
    PaymentAmountMismatch,
    PaymentNotFound,
    ProductNotFound,
    SignatureInvalid,
)
from app.gateways import GatewayAdapter, GatewayRegistry, WebhookEvent
from app.gateways.base import EVENT_CAPTURED, EVENT_FAILED
from app.models import Order, Payment, Refund, SecurityLog
from app.services import audit, catalog, coupon, downloads, inventory, orders, payments
from app.services.email_sender import send_order_confirmation_email

log = logging.getLogger("dijipazar.checkout")

REFUNDABLE_STATUSES = ("completed", "processing")


@dataclass
class IntentResult:
    payment: Payment
    order: Order
    remote_id: str
    client_secret_or_approval_url: str | None


@dataclass
class WebhookResult:
    status: str  # settled | duplicate | failed | ignored | orphaned
    event_type: str
    order_id: int | None = None
    payment_id: int | None = None


class CheckoutOrchestrator:
    def __init__(
        self,
        db: Session,
        gateways: GatewayRegistry,
        mailer: Callable[..., bool] = send_order_confirmation_email,
    ):
        self.db = db
        self.gateways = gateways
        self.mailer = mailer

    # --- Niyet oluşturma ---

    def create_intent(
        self,
        order_id: int,
        method: str,
        currency: str | None = None,
        ip_address: str | None = None,
    ) -> IntentResult:
        gateway = self.gateways.get(method)
        order = orders.require_order(self.db, order_id)
        if order.status != "pending":
            raise OrderNotPending(order_id=order_id, status=order.status)
        coupon.check_order_coupon_currency(self.db, order, currency)

        expected = orders.authoritative_amount(order)
        payment = payments.create_payment_intent(self.db, order_id, method, currency, ip_address)
        if payment.amount != expected:
            payments.mark_payment_failed(self.db, payment.transaction_number)
            log.error("Payment amount drift at creation: txn=%s payment=%s order=%s", payment.transaction_number, payment.amount, expected)
            raise PaymentAmountMismatch(order_id=order_id)

        try:
            remote = gateway.create_remote_intent(
                payment.amount,
                payment.currency,
                payment.transaction_number,
                metadata={"order_id": order_id},
            )
        except GatewayError:
            payments.mark_payment_failed(self.db, payment.transaction_number)
            raise

        payment = payments.set_external_transaction_id(self.db, payment.transaction_number, remote.remote_id)

        # Dönmeden önce tutarı bir kez daha siparişle karşılaştır
        self.db.refresh(order)
        if payment.amount != orders.authoritative_amount(order):
            log.error("Payment amount drift after remote intent: txn=%s", payment.transaction_number)
            raise PaymentAmountMismatch(order_id=order_id)

        log.info("Intent ready: order_id=%s txn=%s remote_id=%s", order_id, payment.transaction_number, remote.remote_id)
        return IntentResult(
            payment=payment,
            order=order,
            remote_id=remote.remote_id,
            client_secret_or_approval_url=remote.client_secret_or_approval_url,
        )

    # --- Webhook ---

    def handle_webhook(
        self,
        method: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        ip_address: str | None = None,
    ) -> WebhookResult:
        gateway = self.gateways.get(method)
        if not gateway.verify_webhook_signature(raw_body, headers, gateway.webhook_secret):
            self._log_signature_failure(gateway, ip_address)
            err = SignatureInvalid(gateway=gateway.name)
            err.status_code = gateway.signature_error_status
            raise err

        event = gateway.parse_event(raw_body)
        if event.kind not in (EVENT_CAPTURED, EVENT_FAILED):
            log.info("Webhook ignored: gateway=%s type=%s", gateway.name, event.event_type)
            return WebhookResult(status="ignored", event_type=event.event_type)

        payment = self._find_payment(event)
        if payment is None:
            log.warning("Webhook for unknown payment: gateway=%s txn=%s ext=%s", gateway.name, event.transaction_number, event.external_id)
            raise PaymentNotFound(transaction_number=event.transaction_number)
        if payment.method != gateway.name:
            raise InvalidState("Ödeme yöntemi olayla uyuşmuyor.", payment_id=payment.id)

        if event.kind == EVENT_FAILED:
            changed = payments.mark_payment_failed(self.db, payment.transaction_number)
            log.info("Payment failed event: txn=%s changed=%s", payment.transaction_number, changed)
            return WebhookResult(status="failed", event_type=event.event_type, order_id=payment.order_id, payment_id=payment.id)

        return self._settle(payment, event)

    def _find_payment(self, event: WebhookEvent) -> Payment | None:
        payment = None
        if event.transaction_number:
            payment = payments.get_by_transaction_number(self.db, event.transaction_number)
        for external_id in (event.external_id, event.remote_order_id):
            if payment is None and external_id:
                payment = payments.get_by_external_transaction_id(self.db, external_id)
        return payment

    def _log_signature_failure(self, gateway: GatewayAdapter, ip_address: str | None) -> None:
        log.warning("Webhook signature invalid: gateway=%s ip=%s", gateway.name, ip_address)
        self.db.add(
            SecurityLog(
                event="webhook_signature_invalid",
                ip=ip_address,
                endpoint=f"/api/payments/{gateway.name}/webhook",
                detail=f"gateway={gateway.name}",
            )
        )
        self.db.commit()

    def _settle(self, payment: Payment, event: WebhookEvent) -> WebhookResult:
        if payment.status == "paid":
            log.info("Webhook re-delivery ignored: txn=%s", payment.transaction_number)
            return WebhookResult(status="duplicate", event_type=event.event_type, order_id=payment.order_id, payment_id=payment.id)
        if payment.status != "unpaid":
            raise InvalidState(f"Ödeme {payment.status} durumunda onaylanamaz.", payment_id=payment.id)

        if event.order_id is not None and event.order_id != payment.order_id:
            raise InvalidState("Olaydaki sipariş ödemeyle eşleşmiyor.", payment_id=payment.id)
        order = orders.require_order(self.db, payment.order_id)
        self.db.refresh(order)
        if order.status != "pending":
            return self._record_orphaned_capture(payment, order, event)

        expected = orders.authoritative_amount(order)
        currency_ok = not event.currency or event.currency.lower() == payment.currency.lower()
        if event.amount_minor != expected or not currency_ok:
            detail = (
                f"txn={payment.transaction_number} expected={expected} {payment.currency} "
                f"reported={event.amount_minor} {event.currency}"
            )
            log.error("Payment amount mismatch: %s", detail)
            audit.record_event(self.db, "payment_amount_mismatch", order.id, detail, actor="webhook")
            self.db.commit()
            raise AmountMismatch(order_id=order.id)

        try:
            claimed = payments.try_confirm_payment(self.db, payment.transaction_number, event.external_id, commit=False)
            if not claimed:
                self.db.rollback()
                log.info("Concurrent settlement lost race: txn=%s", payment.transaction_number)
                return WebhookResult(status="duplicate", event_type=event.event_type, order_id=order.id, payment_id=payment.id)
            orders.mark_paid(self.db, order.id, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self._fulfill(order.id, payment)
        return WebhookResult(status="settled", event_type=event.event_type, order_id=order.id, payment_id=payment.id)

    def _record_orphaned_capture(self, payment: Payment, order: Order, event: WebhookEvent) -> WebhookResult:
        """
        Sipariş başka bir ödemeyle zaten tahsil edilmişken gelen ikinci tahsilat.
        Sağlayıcı tekrar denemesin diye olay kabul edilir; ödeme unpaid kalır ve
        operatörün sağlayıcı panelinden iade edebilmesi için audit kaydı yazılır.
        """
        detail = (
            f"txn={payment.transaction_number} external_id={event.external_id} "
            f"amount={event.amount_minor} {event.currency or payment.currency} order_status={order.status}"
        )
        log.warning("Capture for already settled order: order_id=%s %s", order.id, detail)
        audit.record_event(self.db, "payment_captured_on_settled_order", order.id, detail, actor="webhook")
        self.db.commit()
        return WebhookResult(status="orphaned", event_type=event.event_type, order_id=order.id, payment_id=payment.id)

    # --- Teslimat ---

    def _fulfill(self, order_id: int, payment: Payment) -> Order:
        """Kod tahsisi + indirme hakları + completed tek commit. Hata olursa sipariş processing kalır."""
        order = orders.require_order(self.db, order_id)
        lines: list[str] = []
        try:
            for item in orders.get_order_items(self.db, order_id):
                product = catalog.get_product(self.db, item.product_id)
                if product is None:
                    raise ProductNotFound(product_id=item.product_id)
                if product.product_type == catalog.PRODUCT_TYPE_LICENSE_CODE:
                    codes = inventory.allocate_codes(self.db, product.id, order_id, item.quantity, commit=False)
                    lines.append(f"{product.name}:")
                    lines.extend(f"  {inventory.format_code(code)}" for code in codes)
                else:
                    grant = downloads.issue_download_grant(self.db, order, product.id)
                    lines.append(f"{product.name}: {grant.download_url}")
            order = orders.fulfill_order(self.db, order_id, "\n".join(lines), commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.error("Fulfillment failed: order_id=%s err=%s", order_id, e)
            try:
                audit.record_event(self.db, "fulfillment_failed", order_id, str(e)[:500], actor="webhook")
                self.db.commit()
            except Exception as audit_err:
                self.db.rollback()
                log.warning("Fulfillment audit write failed: order_id=%s err=%s", order_id, audit_err)
            raise
        self.db.refresh(order)
        log.info("Order fulfilled: order_id=%s lines=%s", order_id, len(lines))

        try:
            self.mailer(order.customer_email, order.id, order.fulfillment_result or "", payment.amount, payment.currency)
        except Exception as e:
            log.warning("Confirmation email failed: order_id=%s err=%s", order_id, e)
        return order

    # --- İade ---

    def request_refund(self, order_id: int, reason: str | None = None, actor_id: int | None = None) -> Refund:
        order = orders.require_order(self.db, order_id)
        if order.status == "refunded":
            raise AlreadyRefunded(order_id=order_id)
        if order.status not in REFUNDABLE_STATUSES:
            raise OrderNotRefundable(order_id=order_id, status=order.status)

        payment = payments.get_payment_for_order(self.db, order_id)
        if payment is None:
            raise PaymentNotFound(order_id=order_id)
        if payment.status == "refunded" or payments.has_succeeded_refund(self.db, payment.id):
            raise AlreadyRefunded(order_id=order_id)
        if any(r.status == "pending" for r in payments.list_refunds_for_payment(self.db, payment.id)):
            raise InvalidState("Bu ödeme için iade işlemi sürüyor.", order_id=order_id)
        if payment.status != "paid" or not payment.external_transaction_id:
            raise InvalidState("Tahsil edilmemiş ödeme iade edilemez.", order_id=order_id)

        amount = orders.authoritative_amount(order)
        if amount != payment.amount:
            log.error("Refund amount drift: order_id=%s order=%s payment=%s", order_id, amount, payment.amount)
            raise PaymentAmountMismatch(order_id=order_id)

        gateway = self.gateways.get(payment.method)
        try:
            remote = gateway.create_remote_refund(payment.external_transaction_id, amount, payment.currency, reason)
        except GatewayError as e:
            payments.create_refund_record(
                self.db, payment.id, order_id, amount, payment.currency, gateway.name, None, "failed", reason,
            )
            log.warning("Refund failed at provider: order_id=%s err=%s", order_id, e.message)
            raise

        if remote.status != "succeeded":
            refund = payments.create_refund_record(
                self.db, payment.id, order_id, amount, payment.currency, gateway.name,
                remote.remote_refund_id, remote.status, reason,
            )
            if remote.status == "failed":
                raise GatewayError("Ödeme sağlayıcısı iadeyi reddetti.", order_id=order_id)
            log.info("Refund pending at provider: order_id=%s refund_id=%s", order_id, refund.id)
            return refund

        try:
            refund = payments.create_refund_record(
                self.db, payment.id, order_id, amount, payment.currency, gateway.name,
                remote.remote_refund_id, "succeeded", reason, commit=False,
            )
            payments.update_payment_status(self.db, payment.transaction_number, "refunded", commit=False)
            orders.mark_order_refunded(self.db, order_id, user_id=actor_id, commit=False)
            audit.log_order_refund(self.db, order_id, refund.id, amount, reason, actor_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            log.exception("Refund bookkeeping rolled back: order_id=%s remote_refund_id=%s", order_id, remote.remote_refund_id)
            raise
        self.db.refresh(refund)
        log.info("Order refunded: order_id=%s refund_id=%s amount=%s", order_id, refund.id, amount)
        return refund
