"""Sipariş ve sipariş kalemleri. Durum makinesi: app/services/orders.py."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class Order(SQLModel, table=True):
    __tablename__ = "orders"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int | None = Field(default=None, index=True)  # None = misafir sipariş
    customer_email: str = Field(index=True)
    quantity: int = 1
    amount: int  # İndirim öncesi tutar (cent)
    coupon_code: str | None = Field(default=None, max_length=64)
    discount_amount: int = 0
    subtotal_amount: int | None = None
    # total_amount ?? amount = tahsil edilecek yetkili tutar
    total_amount: int | None = None
    status: str = Field(default="pending", index=True)  # cart | pending | processing | completed | cancelled | refunded
    fulfillment_result: str | None = None  # Lisans kodları / indirme linkleri (metin)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: datetime | None = None


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True, ondelete="CASCADE")
    product_id: int = Field(foreign_key="products.id", index=True)
    quantity: int = 1
    price: int  # Sipariş anındaki birim fiyat (değişmez)
