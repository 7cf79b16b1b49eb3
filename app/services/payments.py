"""
Ödeme defteri: ödeme kayıtları, yetkili tutar çözümü ve iade kayıtları.
Tutar hiçbir fonksiyonda parametre olarak alınmaz; her zaman siparişten okunur.
"""
import logging
import secrets
from datetime import datetime, timezone

from sqlalchemy import update
from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import OrderNotFound, PaymentNotFound, ValidationFailed
from app.models import Payment, Refund
from app.models.base import utcnow
from app.services import orders

log = logging.getLogger("dijipazar.payments")

PAYMENT_METHODS = ("stripe", "paypal")
PAYMENT_STATUSES = ("unpaid", "paid", "refunded", "failed")
REFUND_STATUSES = ("pending", "succeeded", "failed")


def generate_transaction_number() -> str:
    """Benzersiz, gateway'e gidip gelen iç referans: TXN-<ms>-<rastgele>."""
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"TXN-{millis}-{secrets.token_hex(5)}"


def get_by_id(db: Session, payment_id: int) -> Payment | None:
    return db.get(Payment, payment_id)


def get_by_transaction_number(db: Session, transaction_number: str) -> Payment | None:
    stmt = select(Payment).where(Payment.transaction_number == transaction_number)
    return db.exec(stmt).first()


def get_by_external_transaction_id(db: Session, external_id: str) -> Payment | None:
    stmt = select(Payment).where(Payment.external_transaction_id == external_id).order_by(Payment.id.desc())
    return db.exec(stmt).first()


def list_payments_for_order(db: Session, order_id: int) -> list[Payment]:
    stmt = select(Payment).where(Payment.order_id == order_id).order_by(Payment.id.desc())
    return list(db.exec(stmt).all())


def get_payment_for_order(db: Session, order_id: int) -> Payment | None:
    """Siparişin tahsil edilmiş (paid/refunded) ödemesi; yoksa en son ödeme denemesi."""
    payments = list_payments_for_order(db, order_id)
    for payment in payments:
        if payment.status in ("paid", "refunded"):
            return payment
    return payments[0] if payments else None


def create_payment_intent(
    db: Session,
    order_id: int,
    method: str,
    currency: str | None = None,
    ip_address: str | None = None,
) -> Payment:
    """Siparişin yetkili tutarıyla unpaid ödeme satırı açar. İmzada tutar parametresi yoktur."""
    if method not in PAYMENT_METHODS:
        raise ValidationFailed("Geçersiz ödeme yöntemi.", method=method)
    order = orders.get_order(db, order_id)
    if order is None:
        raise OrderNotFound(order_id=order_id)

    payment = Payment(
        transaction_number=generate_transaction_number(),
        user_id=order.user_id,
        order_id=order_id,
        amount=orders.authoritative_amount(order),
        currency=(currency or settings.default_currency).strip().lower(),
        method=method,
        status="unpaid",
        ip_address=(ip_address or None) and ip_address[:64],
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    log.info(
        "Payment created: txn=%s order_id=%s amount=%s %s method=%s",
        payment.transaction_number, order_id, payment.amount, payment.currency, method,
    )
    return payment


def set_external_transaction_id(db: Session, transaction_number: str, external_id: str) -> Payment:
    payment = get_by_transaction_number(db, transaction_number)
    if payment is None:
        raise PaymentNotFound(transaction_number=transaction_number)
    payment.external_transaction_id = external_id
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def try_confirm_payment(
    db: Session,
    transaction_number: str,
    external_transaction_id: str | None,
    commit: bool = True,
) -> bool:
    """
    unpaid -> paid koşullu geçişi. Sadece bu çağrı satırı değiştirdiyse True döner;
    eşzamanlı iki webhook'tan yalnızca biri True alır.
    """
    values = {"status": "paid", "paid_at": utcnow()}
    if external_transaction_id:
        values["external_transaction_id"] = external_transaction_id
    stmt = (
        update(Payment)
        .where(Payment.transaction_number == transaction_number, Payment.status == "unpaid")
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    result = db.exec(stmt)
    if commit:
        db.commit()
    return result.rowcount == 1


def confirm_payment(db: Session, transaction_number: str, external_transaction_id: str | None = None) -> Payment:
    """Ödemeyi paid yapar. İkinci çağrı satırı değiştirmez, aynı onaylı kaydı döner."""
    changed = try_confirm_payment(db, transaction_number, external_transaction_id)
    payment = get_by_transaction_number(db, transaction_number)
    if payment is None:
        raise PaymentNotFound(transaction_number=transaction_number)
    db.refresh(payment)
    if not changed:
        log.info("confirm_payment no-op: txn=%s status=%s", transaction_number, payment.status)
    return payment


def update_payment_status(db: Session, transaction_number: str, status: str, commit: bool = True) -> Payment:
    if status not in PAYMENT_STATUSES:
        raise ValidationFailed("Geçersiz ödeme durumu.", status=status)
    payment = get_by_transaction_number(db, transaction_number)
    if payment is None:
        raise PaymentNotFound(transaction_number=transaction_number)
    payment.status = status
    db.add(payment)
    if commit:
        db.commit()
        db.refresh(payment)
    return payment


def mark_payment_failed(db: Session, transaction_number: str) -> bool:
    """Sadece unpaid ödemeyi failed yapar; onaylanmış ödeme geç gelen hata olayıyla bozulmaz."""
    stmt = (
        update(Payment)
        .where(Payment.transaction_number == transaction_number, Payment.status == "unpaid")
        .values(status="failed")
        .execution_options(synchronize_session="fetch")
    )
    result = db.exec(stmt)
    db.commit()
    return result.rowcount == 1


def create_refund_record(
    db: Session,
    payment_id: int,
    order_id: int,
    amount: int,
    currency: str,
    provider: str,
    provider_refund_id: str | None,
    status: str,
    reason: str | None = None,
    commit: bool = True,
) -> Refund:
    """Sadece kayıt ekler; ödeme/sipariş durumunu çağıran yönetir."""
    if status not in REFUND_STATUSES:
        raise ValidationFailed("Geçersiz iade durumu.", status=status)
    refund = Refund(
        payment_id=payment_id,
        order_id=order_id,
        amount=amount,
        currency=currency,
        provider=provider,
        provider_refund_id=provider_refund_id,
        status=status,
        reason=(reason or None) and reason[:500],
    )
    db.add(refund)
    if commit:
        db.commit()
        db.refresh(refund)
    else:
        db.flush()
    return refund


def list_refunds_for_payment(db: Session, payment_id: int) -> list[Refund]:
    stmt = select(Refund).where(Refund.payment_id == payment_id).order_by(Refund.id)
    return list(db.exec(stmt).all())


def has_succeeded_refund(db: Session, payment_id: int) -> bool:
    stmt = select(Refund.id).where(Refund.payment_id == payment_id, Refund.status == "succeeded").limit(1)
    return db.exec(stmt).first() is not None
