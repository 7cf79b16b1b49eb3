from datetime import datetime

from sqlmodel import Field, SQLModel

from app.models.base import utcnow


class Payment(SQLModel, table=True):
    """Ödeme kaydı: transaction_number ile gateway callback'inde eşleştirilir. Tutar her zaman siparişten kopyalanır."""

    __tablename__ = "payments"
    id: int | None = Field(default=None, primary_key=True)
    transaction_number: str = Field(unique=True, index=True)
    # Stripe PaymentIntent id / PayPal order id; capture sonrası PayPal capture id
    external_transaction_id: str | None = Field(default=None, index=True)
    user_id: int | None = Field(default=None, index=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    amount: int  # En küçük birimde (cent)
    currency: str = "usd"
    method: str  # "stripe" | "paypal"
    status: str = Field(default="unpaid", index=True)  # unpaid | paid | refunded | failed
    ip_address: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    paid_at: datetime | None = None


class Refund(SQLModel, table=True):
    """İade denemesi. Başarısız denemeler de denetim için saklanır; ödeme başına en fazla bir succeeded."""

    __tablename__ = "refunds"
    id: int | None = Field(default=None, primary_key=True)
    payment_id: int = Field(foreign_key="payments.id", index=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    amount: int
    currency: str
    provider: str  # "stripe" | "paypal"
    provider_refund_id: str | None = None
    status: str = Field(index=True)  # pending | succeeded | failed
    reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
