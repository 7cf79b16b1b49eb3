"""
Lisans kodu havuzu. Tahsis, satır başına koşullu UPDATE ile yapılır
(order_id IS NULL -> order_id); aynı kod iki siparişe asla verilmez.
"""
import logging

from sqlalchemy import update
from sqlmodel import Session, func, select

from app.core.errors import InsufficientInventory, ProductNotFound, ValidationFailed
from app.models import InventoryItem
from app.models.base import utcnow
from app.services import catalog

log = logging.getLogger("dijipazar.inventory")

# Eşzamanlı taleplerle yarışta kaybedilen adaylar için yeniden seçim turu
MAX_CLAIM_ROUNDS = 5


def count_available(db: Session, product_id: int) -> int:
    stmt = (
        select(func.count())
        .select_from(InventoryItem)
        .where(InventoryItem.product_id == product_id, InventoryItem.order_id.is_(None))
    )
    return int(db.exec(stmt).one() or 0)


def list_codes_for_order(db: Session, order_id: int) -> list[InventoryItem]:
    stmt = select(InventoryItem).where(InventoryItem.order_id == order_id).order_by(InventoryItem.id)
    return list(db.exec(stmt).all())


def format_code(item: InventoryItem) -> str:
    return f"{item.license_code}:{item.password}" if item.password else item.license_code


def _candidate_ids(db: Session, product_id: int, limit: int) -> list[int]:
    # PostgreSQL'de kilitli satırlar atlanır; SQLite FOR UPDATE'i yok sayar
    stmt = (
        select(InventoryItem.id)
        .where(InventoryItem.product_id == product_id, InventoryItem.order_id.is_(None))
        .order_by(InventoryItem.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return list(db.exec(stmt).all())


def _claim(db: Session, item_id: int, order_id: int, allocated_at) -> bool:
    stmt = (
        update(InventoryItem)
        .where(InventoryItem.id == item_id, InventoryItem.order_id.is_(None))
        .values(order_id=order_id, allocated_at=allocated_at)
    )
    result = db.exec(stmt)
    return result.rowcount == 1


def allocate_codes(
    db: Session,
    product_id: int,
    order_id: int,
    quantity: int,
    commit: bool = True,
) -> list[InventoryItem]:
    """
    Siparişe quantity adet boşta kod tahsis eder.
    Yeterli kod yoksa InsufficientInventory fırlatır ve transaction geri alınır; havuz değişmez.
    commit=False ise yazımlar çağıranın transaction'ında kalır (teslimatın tamamı tek commit).
    """
    if quantity <= 0:
        raise ValidationFailed("Adet pozitif olmalı.", field="quantity")
    allocated_at = utcnow()
    claimed: list[int] = []
    try:
        for _ in range(MAX_CLAIM_ROUNDS):
            needed = quantity - len(claimed)
            candidates = _candidate_ids(db, product_id, needed)
            if not candidates:
                break
            for item_id in candidates:
                if _claim(db, item_id, order_id, allocated_at):
                    claimed.append(item_id)
            if len(claimed) >= quantity:
                break
        if len(claimed) < quantity:
            raise InsufficientInventory(
                f"Yetersiz stok. İstenen: {quantity}, ayrılabilen: {len(claimed)}",
                product_id=product_id,
                requested=quantity,
            )
        if commit:
            db.commit()
    except Exception:
        db.rollback()
        raise

    stmt = (
        select(InventoryItem)
        .where(InventoryItem.id.in_(claimed))
        .order_by(InventoryItem.id)
        .execution_options(populate_existing=True)
    )
    items = list(db.exec(stmt).all())
    log.info("Allocated %s code(s): product_id=%s order_id=%s", len(items), product_id, order_id)
    return items


def add_stock(db: Session, product_id: int, codes: list[tuple[str, str | None]]) -> list[InventoryItem]:
    """Admin toplu stok ekleme: (kod, şifre) çiftleri. Boş kodlar atlanır."""
    product = catalog.get_product(db, product_id)
    if product is None:
        raise ProductNotFound(product_id=product_id)
    if product.product_type != catalog.PRODUCT_TYPE_LICENSE_CODE:
        raise ValidationFailed("Bu ürün lisans kodu ile teslim edilmiyor.", product_id=product_id)
    items = []
    for code, password in codes:
        code = (code or "").strip()
        if not code:
            continue
        items.append(InventoryItem(product_id=product_id, license_code=code, password=(password or "").strip() or None))
    if not items:
        raise ValidationFailed("Eklenecek kod yok.")
    db.add_all(items)
    db.commit()
    for item in items:
        db.refresh(item)
    log.info("Stock added: product_id=%s count=%s", product_id, len(items))
    return items
