"""
Sipariş defteri: taslak sipariş, durum makinesi ve çok satırlı atomik geçişler.
Durumlar: cart -> pending -> processing -> completed | cancelled; completed -> refunded.
"""
import logging

from sqlmodel import Session, select

from app.core.errors import InsufficientInventory, InvalidState, OrderNotFound, ProductNotFound, ValidationFailed
from app.models import Order, OrderItem
from app.models.base import utcnow
from app.services import audit, catalog, downloads, inventory

log = logging.getLogger("dijipazar.orders")

ORDER_STATUSES = ("cart", "pending", "processing", "completed", "cancelled", "refunded")

# İleri yönlü geçişler. processing -> refunded: iade akışı ödemesi alınmış ama teslim edilememiş siparişe de izin verir
ORDER_TRANSITIONS: dict[str, frozenset[str]] = {
    "cart": frozenset({"pending"}),
    "pending": frozenset({"processing"}),
    "processing": frozenset({"completed", "cancelled", "refunded"}),
    "completed": frozenset({"refunded"}),
    "cancelled": frozenset(),
    "refunded": frozenset(),
}

# Kupon kişi başı kullanım sayımında dikkate alınan durumlar
COUPON_COUNTED_STATUSES = ("completed", "processing", "pending")


def can_transition(old_status: str, new_status: str) -> bool:
    return new_status in ORDER_TRANSITIONS.get(old_status, frozenset())


def authoritative_amount(order: Order) -> int:
    """Tahsil edilecek tek doğru tutar: indirimli toplam varsa o, yoksa ham tutar."""
    return order.total_amount if order.total_amount is not None else order.amount


def get_order(db: Session, order_id: int) -> Order | None:
    return db.get(Order, order_id)


def require_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id=order_id)
    return order


def get_order_items(db: Session, order_id: int) -> list[OrderItem]:
    stmt = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
    return list(db.exec(stmt).all())


def list_orders_for_user(db: Session, user_id: int) -> list[Order]:
    stmt = select(Order).where(Order.user_id == user_id).order_by(Order.created_at.desc(), Order.id.desc())
    return list(db.exec(stmt).all())


def create_draft_order(
    db: Session,
    product_id: int,
    quantity: int,
    customer_email: str,
    user_id: int | None = None,
) -> Order:
    """
    Katalogdaki güncel fiyatla sipariş + sipariş kalemi oluşturur.
    İki satır tek transaction'da yazılır; kalem yazılamazsa sipariş satırı da geri alınır.
    """
    product = catalog.get_active_product(db, product_id)
    if product is None:
        raise ProductNotFound(product_id=product_id)

    if quantity < max(product.min_quantity, 1):
        raise ValidationFailed(f"En az {max(product.min_quantity, 1)} adet sipariş verilebilir.", field="quantity")
    if product.max_quantity is not None and quantity > product.max_quantity:
        raise ValidationFailed(f"En fazla {product.max_quantity} adet sipariş verilebilir.", field="quantity")

    if product.product_type == catalog.PRODUCT_TYPE_LICENSE_CODE:
        available = inventory.count_available(db, product_id)
        if available < quantity:
            raise InsufficientInventory(product_id=product_id)
    elif product.stock is not None and product.stock < quantity:
        raise InsufficientInventory(product_id=product_id)

    order = Order(
        user_id=user_id,
        customer_email=customer_email.strip().lower(),
        quantity=quantity,
        amount=product.price * quantity,
        status="pending",
    )
    try:
        db.add(order)
        db.flush()
        db.add(OrderItem(order_id=order.id, product_id=product_id, quantity=quantity, price=product.price))
        db.commit()
    except Exception:
        db.rollback()
        log.exception("Draft order creation rolled back: product_id=%s email=%s", product_id, customer_email)
        raise
    db.refresh(order)
    log.info("Draft order created: order_id=%s product_id=%s amount=%s", order.id, product_id, order.amount)
    return order


def update_status(
    db: Session,
    order_id: int,
    new_status: str,
    user_id: int | None = None,
    actor: str = "system",
    commit: bool = True,
) -> Order:
    order = require_order(db, order_id)
    old_status = order.status
    if not can_transition(old_status, new_status):
        raise InvalidState(f"Sipariş durumu {old_status} -> {new_status} olarak değiştirilemez.", order_id=order_id)
    order.status = new_status
    if new_status == "completed":
        order.completed_at = utcnow()
    db.add(order)
    audit.log_order_status_change(db, order_id, old_status, new_status, user_id, actor)
    if commit:
        db.commit()
        db.refresh(order)
    return order


def mark_paid(db: Session, order_id: int, commit: bool = True) -> Order:
    """pending -> processing. Başka durumda hiçbir şey yapmaz, siparişi olduğu gibi döner."""
    order = require_order(db, order_id)
    if order.status != "pending":
        log.info("mark_paid no-op: order_id=%s status=%s", order_id, order.status)
        return order
    order.status = "processing"
    db.add(order)
    audit.record_event(db, "order_paid", order_id, "pending -> processing", actor="webhook")
    if commit:
        db.commit()
        db.refresh(order)
    return order


def fulfill_order(db: Session, order_id: int, fulfillment_result: str, commit: bool = True) -> Order:
    """Teslimat metni + completed + completed_at tek yazımda."""
    order = require_order(db, order_id)
    if not can_transition(order.status, "completed"):
        raise InvalidState(f"Sipariş {order.status} durumunda teslim edilemez.", order_id=order_id)
    order.fulfillment_result = fulfillment_result
    order.status = "completed"
    order.completed_at = utcnow()
    db.add(order)
    audit.record_event(db, "order_fulfilled", order_id, "processing -> completed")
    if commit:
        db.commit()
        db.refresh(order)
    return order


def mark_order_refunded(db: Session, order_id: int, user_id: int | None = None, commit: bool = True) -> Order:
    """Sipariş refunded + canlı indirme haklarının kapatılması birlikte görünür ya da hiç görünmez."""
    order = require_order(db, order_id)
    old_status = order.status
    if not can_transition(old_status, "refunded"):
        raise InvalidState(f"Sipariş {old_status} durumunda iade edilemez.", order_id=order_id)
    order.status = "refunded"
    db.add(order)
    expired = downloads.expire_grants_for_order(db, order_id)
    audit.log_order_status_change(db, order_id, old_status, "refunded", user_id, "admin")
    if commit:
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
    log.info("Order refunded: order_id=%s expired_downloads=%s", order_id, expired)
    return order
