"""Admin API: sadece ADMIN_SECRET ile erişilir. İade, sipariş detayı, lisans kodu stoğu, kuponlar."""
from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.checkout import order_to_response
from app.api.deps import get_orchestrator, require_admin
from app.core.database import get_db
from app.models import Coupon, Refund
from app.schemas import (
    AddStockRequest,
    AddStockResponse,
    AdminOrderResponse,
    CouponResponse,
    CreateCouponRequest,
    PaymentSummary,
    RefundRequest,
    RefundResponse,
)
from app.services import coupon as coupon_service
from app.services import downloads, inventory, orders, payments
from app.services.checkout import CheckoutOrchestrator

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _refund_response(refund: Refund) -> RefundResponse:
    return RefundResponse(
        id=refund.id,
        order_id=refund.order_id,
        payment_id=refund.payment_id,
        amount=refund.amount,
        currency=refund.currency,
        provider=refund.provider,
        provider_refund_id=refund.provider_refund_id,
        status=refund.status,
        reason=refund.reason,
        created_at=refund.created_at,
    )


def _coupon_response(coupon: Coupon) -> CouponResponse:
    return CouponResponse(
        id=coupon.id,
        code=coupon.code,
        type=coupon.type,
        amount=coupon.amount,
        currency=coupon.currency,
        max_uses=coupon.max_uses,
        used_count=coupon.used_count,
        per_user_limit=coupon.per_user_limit,
        min_order_amount=coupon.min_order_amount,
        starts_at=coupon.starts_at,
        ends_at=coupon.ends_at,
        is_active=coupon.is_active,
    )


@router.post("/orders/{order_id}/refund", response_model=RefundResponse)
def refund_order(
    order_id: int,
    body: RefundRequest | None = None,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    refund = orchestrator.request_refund(order_id, reason=body.reason if body else None)
    return _refund_response(refund)


@router.get("/orders/{order_id}", response_model=AdminOrderResponse)
def order_detail(order_id: int, db: Session = Depends(get_db)):
    """Sipariş + tüm ödeme denemeleri + iade kayıtları."""
    order = orders.require_order(db, order_id)
    order_payments = payments.list_payments_for_order(db, order_id)
    refunds: list[Refund] = []
    for p in order_payments:
        refunds.extend(payments.list_refunds_for_payment(db, p.id))
    return AdminOrderResponse(
        order=order_to_response(db, order),
        payments=[
            PaymentSummary(
                transaction_number=p.transaction_number,
                external_transaction_id=p.external_transaction_id,
                amount=p.amount,
                currency=p.currency,
                method=p.method,
                status=p.status,
                paid_at=p.paid_at,
            )
            for p in order_payments
        ],
        refunds=[_refund_response(r) for r in refunds],
        license_codes=len(inventory.list_codes_for_order(db, order_id)),
        download_grants=len(downloads.list_grants_for_order(db, order_id)),
    )


@router.post("/inventory", response_model=AddStockResponse, status_code=201)
def add_stock(body: AddStockRequest, db: Session = Depends(get_db)):
    items = inventory.add_stock(db, body.product_id, [(line.code, line.password) for line in body.codes])
    return AddStockResponse(
        product_id=body.product_id,
        added=len(items),
        available=inventory.count_available(db, body.product_id),
    )


@router.post("/coupons", response_model=CouponResponse, status_code=201)
def create_coupon(body: CreateCouponRequest, db: Session = Depends(get_db)):
    coupon = coupon_service.create_coupon(
        db,
        code=body.code,
        type=body.type,
        amount=body.amount,
        currency=body.currency,
        max_uses=body.max_uses,
        per_user_limit=body.per_user_limit,
        min_order_amount=body.min_order_amount,
        starts_at=body.starts_at,
        ends_at=body.ends_at,
        is_active=body.is_active,
    )
    return _coupon_response(coupon)
