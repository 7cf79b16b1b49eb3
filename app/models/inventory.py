"""Lisans kodu havuzu: order_id None = boşta; dolu = o siparişe kalıcı olarak tahsis edilmiş."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class InventoryItem(SQLModel, table=True):
    __tablename__ = "inventory_items"
    id: int | None = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    license_code: str
    password: str | None = None
    order_id: int | None = Field(default=None, foreign_key="orders.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    allocated_at: datetime | None = None
