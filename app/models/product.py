"""Katalog: ürün ve dijital dosya kayıtları. Çekirdek bu tabloları sadece okur."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class Product(SQLModel, table=True):
    __tablename__ = "products"
    id: int | None = Field(default=None, primary_key=True)
    name: str
    price: int  # Birim fiyat, en küçük birimde (cent)
    product_type: str = Field(index=True)  # "digital" (dosya indirme) | "license_code" (stok havuzu)
    is_active: bool = True
    stock: int | None = None  # None = sınırsız (sadece digital ürünlerde anlamlı)
    min_quantity: int = 1
    max_quantity: int | None = None  # None = limitsiz
    created_at: datetime = Field(default_factory=utcnow)


class ProductFile(SQLModel, table=True):
    __tablename__ = "product_files"
    id: int | None = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    file_key: str  # Depolama anahtarı (ör. "ebooks/python-101.pdf")
    file_name: str
    max_downloads: int | None = None  # None = ayarlardaki varsayılan
    created_at: datetime = Field(default_factory=utcnow)
