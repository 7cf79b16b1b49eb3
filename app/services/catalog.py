"""Katalog okuyucu: ürün fiyatı, tipi ve aktiflik bilgisi. Çekirdek katalogu değiştirmez."""
from sqlmodel import Session, select

from app.models import Product, ProductFile

PRODUCT_TYPE_DIGITAL = "digital"
PRODUCT_TYPE_LICENSE_CODE = "license_code"


def get_product(db: Session, product_id: int) -> Product | None:
    return db.get(Product, product_id)


def get_active_product(db: Session, product_id: int) -> Product | None:
    """Satışta olmayan ürün, bulunamayan ürünle aynı muamele görür."""
    product = db.get(Product, product_id)
    if product is None or not product.is_active:
        return None
    return product


def get_primary_file(db: Session, product_id: int) -> ProductFile | None:
    stmt = select(ProductFile).where(ProductFile.product_id == product_id).order_by(ProductFile.id).limit(1)
    return db.exec(stmt).first()
