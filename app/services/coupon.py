"""İndirim kuponu doğrulama, indirim hesaplama ve siparişe uygulama."""
import logging
from datetime import datetime

from sqlalchemy import update
from sqlmodel import Session, func, select

from app.core.config import settings
from app.core.errors import CouponNotFound, InvalidState, OrderNotPending, ValidationFailed
from app.models import Coupon, Order
from app.models.base import to_naive_utc, utcnow
from app.services import orders, payments

log = logging.getLogger("dijipazar.coupon")

COUPON_TYPES = ("percentage", "fixed")


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def get_coupon_by_code(db: Session, code: str) -> Coupon | None:
    code_upper = normalize_code(code)
    if not code_upper:
        return None
    stmt = select(Coupon).where(Coupon.code == code_upper)
    return db.exec(stmt).first()


def _user_usage_count(db: Session, coupon: Coupon, user_id: int) -> int:
    """Kullanıcının bu kuponla verdiği sipariş sayısı (iptal/iade edilenler hariç)."""
    stmt = (
        select(func.count())
        .select_from(Order)
        .where(
            Order.user_id == user_id,
            Order.coupon_code == coupon.code,
            Order.status.in_(orders.COUPON_COUNTED_STATUSES),
        )
    )
    return int(db.exec(stmt).one() or 0)


def validate_coupon_for_cart(
    db: Session,
    coupon: Coupon,
    order: Order,
    user_id: int | None = None,
    now: datetime | None = None,
) -> tuple[bool, str | None]:
    """
    Kuponu sipariş için doğrular: (geçerli_mi, sebep). Kontrol sırası sabittir;
    ilk başarısız kontrolün mesajı kullanıcıya aynen gösterilir.
    """
    now = now or utcnow()
    if not coupon.is_active:
        return False, "Bu indirim kodu aktif değil."

    if coupon.starts_at and now < coupon.starts_at:
        return False, "Bu indirim kodu henüz geçerli değil."
    if coupon.ends_at and now > coupon.ends_at:
        return False, "Bu indirim kodunun süresi dolmuş."

    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        return False, "Bu indirim kodunun kullanım limiti dolmuş."

    if user_id and coupon.per_user_limit is not None:
        if _user_usage_count(db, coupon, user_id) >= coupon.per_user_limit:
            return False, "Bu indirim kodu için kullanım hakkınız dolmuş."

    subtotal = order.subtotal_amount if order.subtotal_amount is not None else order.amount
    if coupon.min_order_amount is not None and subtotal < coupon.min_order_amount:
        return False, f"Bu indirim kodu için en az {coupon.min_order_amount / 100:.2f} tutarında sipariş gerekir."

    return True, None


def apply_coupon_to_amount(amount: int, coupon: Coupon) -> tuple[int, int]:
    """(indirim, toplam) döner. İndirim tutarı aşmaz, toplam negatif olmaz."""
    if coupon.type == "percentage":
        discount = (amount * coupon.amount) // 100
        discount = min(discount, amount)
    elif coupon.type == "fixed":
        discount = min(coupon.amount, amount)
    else:
        discount = 0
    discount = max(discount, 0)
    total = max(0, amount - discount)
    return discount, total


def check_coupon_currency(coupon: Coupon, currency: str | None) -> None:
    """Para birimi kısıtlı kupon başka para biriminde kullanılamaz. None = varsayılan para birimi."""
    currency = (currency or settings.default_currency).strip().lower()
    if coupon.currency and coupon.currency.strip().lower() != currency:
        raise ValidationFailed("Bu indirim kodu bu para biriminde geçerli değil.", code=coupon.code)


def check_order_coupon_currency(db: Session, order: Order, currency: str | None) -> None:
    """Ödeme niyeti açılırken siparişteki kuponun para birimi tekrar kontrol edilir."""
    if not order.coupon_code:
        return
    coupon = get_coupon_by_code(db, order.coupon_code)
    if coupon is not None:
        check_coupon_currency(coupon, currency)


def increment_coupon_usage(db: Session, coupon_id: int, commit: bool = True) -> None:
    """Kullanım sayacını artırır. İadede azaltılmaz."""
    stmt = (
        update(Coupon)
        .where(Coupon.id == coupon_id)
        .values(used_count=Coupon.used_count + 1, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.exec(stmt)
    if commit:
        db.commit()


def apply_coupon_to_order(
    db: Session,
    order_id: int,
    code: str,
    user_id: int | None = None,
    currency: str | None = None,
) -> Order:
    """Kuponu doğrular, indirimli toplamı siparişe yazar ve kullanım sayacını aynı commit'te artırır."""
    order = orders.require_order(db, order_id)
    if order.status not in ("cart", "pending"):
        raise OrderNotPending(order_id=order_id)
    if order.coupon_code:
        raise ValidationFailed("Siparişe zaten bir indirim kodu uygulanmış.", order_id=order_id)
    if payments.list_payments_for_order(db, order_id):
        # Açılmış ödeme satırının tutarı siparişle birebir kalmalı
        raise InvalidState("Ödemesi başlatılmış siparişe indirim kodu uygulanamaz.", order_id=order_id)

    coupon = get_coupon_by_code(db, code)
    if coupon is None:
        raise CouponNotFound(code=normalize_code(code))

    valid, reason = validate_coupon_for_cart(db, coupon, order, user_id)
    if not valid:
        raise ValidationFailed(reason, code=coupon.code)

    check_coupon_currency(coupon, currency)

    subtotal = order.subtotal_amount if order.subtotal_amount is not None else order.amount
    discount, total = apply_coupon_to_amount(subtotal, coupon)
    order.coupon_code = coupon.code
    order.subtotal_amount = subtotal
    order.discount_amount = discount
    order.total_amount = total
    db.add(order)
    increment_coupon_usage(db, coupon.id, commit=False)
    db.commit()
    db.refresh(order)
    log.info("Coupon applied: order_id=%s code=%s discount=%s total=%s", order_id, coupon.code, discount, total)
    return order


def create_coupon(
    db: Session,
    code: str,
    type: str,
    amount: int,
    currency: str | None = None,
    max_uses: int | None = None,
    per_user_limit: int | None = None,
    min_order_amount: int | None = None,
    starts_at: datetime | None = None,
    ends_at: datetime | None = None,
    is_active: bool = True,
) -> Coupon:
    code_upper = normalize_code(code)
    if not code_upper:
        raise ValidationFailed("Kod boş olamaz.", field="code")
    if type not in COUPON_TYPES:
        raise ValidationFailed("Tip 'percentage' veya 'fixed' olmalı.", field="type")
    if type == "percentage" and not (0 <= amount <= 100):
        raise ValidationFailed("Yüzde 0-100 arasında olmalı.", field="amount")
    if amount < 0:
        raise ValidationFailed("İndirim negatif olamaz.", field="amount")
    if get_coupon_by_code(db, code_upper) is not None:
        raise ValidationFailed("Bu kod zaten var.", field="code")
    coupon = Coupon(
        code=code_upper,
        type=type,
        amount=amount,
        currency=(currency or "").strip().lower() or None,
        max_uses=max_uses,
        per_user_limit=per_user_limit,
        min_order_amount=min_order_amount,
        starts_at=to_naive_utc(starts_at),
        ends_at=to_naive_utc(ends_at),
        is_active=is_active,
    )
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon
