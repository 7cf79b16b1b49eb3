from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.base import to_naive_utc


class CreateOrderRequest(BaseModel):
    """Taslak sipariş: fiyat her zaman katalogdan okunur, istemci tutar gönderemez."""
    product_id: int
    quantity: int = Field(default=1, ge=1, le=1000)
    customer_email: EmailStr


def _lower_currency(v: str | None) -> str | None:
    return v.strip().lower() if v else None


class ApplyCouponRequest(BaseModel):
    """currency: ödemenin yapılacağı para birimi; niyet aynı para birimiyle açılmalı."""
    code: str = Field(min_length=1, max_length=64)
    currency: str | None = Field(default=None, min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str | None) -> str | None:
        return _lower_currency(v)


class CreateIntentRequest(BaseModel):
    order_id: int
    currency: str | None = Field(default=None, min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str | None) -> str | None:
        return _lower_currency(v)


class OrderItemResponse(BaseModel):
    product_id: int
    quantity: int
    price: int


class OrderResponse(BaseModel):
    id: int
    customer_email: str
    quantity: int
    amount: int
    coupon_code: str | None = None
    discount_amount: int = 0
    subtotal_amount: int | None = None
    total_amount: int | None = None
    payable_amount: int
    status: str
    fulfillment_result: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    items: list[OrderItemResponse] = []


class IntentResponse(BaseModel):
    transaction_number: str
    order_id: int
    amount: int
    currency: str
    method: str
    remote_id: str
    client_secret_or_approval_url: str | None = None


class WebhookResponse(BaseModel):
    received: bool = True
    status: str


class RefundRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RefundResponse(BaseModel):
    id: int
    order_id: int
    payment_id: int
    amount: int
    currency: str
    provider: str
    provider_refund_id: str | None = None
    status: str
    reason: str | None = None
    created_at: datetime


class PaymentSummary(BaseModel):
    transaction_number: str
    external_transaction_id: str | None = None
    amount: int
    currency: str
    method: str
    status: str
    paid_at: datetime | None = None


class AdminOrderResponse(BaseModel):
    order: OrderResponse
    payments: list[PaymentSummary]
    refunds: list[RefundResponse]
    license_codes: int
    download_grants: int


class StockLine(BaseModel):
    code: str = Field(min_length=1, max_length=255)
    password: str | None = Field(default=None, max_length=255)


class AddStockRequest(BaseModel):
    product_id: int
    codes: list[StockLine] = Field(min_length=1, max_length=5000)


class AddStockResponse(BaseModel):
    product_id: int
    added: int
    available: int


class CreateCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    type: Literal["percentage", "fixed"]
    amount: int = Field(ge=0)
    currency: str | None = Field(default=None, max_length=8)
    max_uses: int | None = Field(default=None, ge=0)
    per_user_limit: int | None = Field(default=None, ge=0)
    min_order_amount: int | None = Field(default=None, ge=0)
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_active: bool = True

    @field_validator("starts_at", "ends_at")
    @classmethod
    def utc_window(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v)


class CouponResponse(BaseModel):
    id: int
    code: str
    type: str
    amount: int
    currency: str | None = None
    max_uses: int | None = None
    used_count: int
    per_user_limit: int | None = None
    min_order_amount: int | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    is_active: bool
