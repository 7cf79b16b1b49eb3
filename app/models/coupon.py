"""İndirim kuponu: kod, yüzde/sabit indirim, geçerlilik aralığı ve kullanım limitleri."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class Coupon(SQLModel, table=True):
    """İndirim kodu: admin tarafından oluşturulur, sepete/siparişe uygulanır."""

    __tablename__ = "coupons"
    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True, max_length=64)  # Büyük harfle saklanır, örn: SAVE10
    type: str = Field(max_length=16)  # "percentage" | "fixed"
    amount: int  # percentage: 0-100, fixed: cent
    currency: str | None = Field(default=None, max_length=8)  # None = tüm para birimleri
    max_uses: int | None = None  # None = sınırsız
    used_count: int = 0  # Sadece artar; iade sonrası da azaltılmaz
    per_user_limit: int | None = None
    min_order_amount: int | None = None  # cent
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
