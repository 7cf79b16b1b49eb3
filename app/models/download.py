"""Dijital ürün indirme hakları; iade edilince expires_at = şimdi yapılarak kapatılır."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class DownloadGrant(SQLModel, table=True):
    __tablename__ = "downloads"
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    user_id: int | None = Field(default=None, index=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    product_file_id: int | None = Field(default=None, foreign_key="product_files.id")
    download_url: str
    download_count: int = 0
    max_downloads: int | None = None
    expires_at: datetime | None = None  # None = süresiz
    created_at: datetime = Field(default_factory=utcnow)
    last_downloaded_at: datetime | None = None
