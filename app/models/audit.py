"""Sipariş denetim izi: ödeme, teslimat, iade ve durum geçişleri."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # order_paid, order_fulfilled, order_refunded, order_status_change, ...
    order_id: int | None = Field(default=None, index=True)
    user_id: int | None = Field(default=None, index=True)  # İşlemi yapan (admin/müşteri); webhook için None
    actor: str = "system"  # system | admin | customer | webhook
    detail: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
