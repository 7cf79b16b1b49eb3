"""Mağaza API: taslak sipariş, kupon, ödeme niyeti ve sağlayıcı webhook'ları."""
import logging

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import (
    _admin_secret_constant_time_compare,
    get_client_ip,
    get_current_user,
    get_optional_user,
    get_orchestrator,
)
from app.core.config import settings
from app.core.database import get_db
from app.core.errors import OrderNotFound
from app.core.rate_limit import CHECKOUT_LIMIT, GENERAL_LIMIT, limiter
from app.models import Order, User
from app.schemas import (
    ApplyCouponRequest,
    CreateIntentRequest,
    CreateOrderRequest,
    IntentResponse,
    OrderItemResponse,
    OrderResponse,
    WebhookResponse,
)
from app.services import coupon as coupon_service
from app.services import orders
from app.services.checkout import CheckoutOrchestrator

log = logging.getLogger("dijipazar.api")

router = APIRouter(prefix="/api", tags=["checkout"])


def order_to_response(db: Session, order: Order) -> OrderResponse:
    items = [
        OrderItemResponse(product_id=i.product_id, quantity=i.quantity, price=i.price)
        for i in orders.get_order_items(db, order.id)
    ]
    return OrderResponse(
        id=order.id,
        customer_email=order.customer_email,
        quantity=order.quantity,
        amount=order.amount,
        coupon_code=order.coupon_code,
        discount_amount=order.discount_amount,
        subtotal_amount=order.subtotal_amount,
        total_amount=order.total_amount,
        payable_amount=orders.authoritative_amount(order),
        status=order.status,
        fulfillment_result=order.fulfillment_result,
        created_at=order.created_at,
        completed_at=order.completed_at,
        items=items,
    )


def _load_visible_order(
    db: Session,
    order_id: int,
    user: User | None,
    email: str | None = None,
    admin_secret: str | None = None,
) -> Order:
    """Sahibi, misafir siparişte e-posta sahibi veya admin görebilir; diğerlerine 404."""
    order = orders.require_order(db, order_id)
    if admin_secret and (settings.admin_secret or "").strip():
        if _admin_secret_constant_time_compare(admin_secret, settings.admin_secret.strip()):
            return order
    if order.user_id is not None:
        if user is None or user.id != order.user_id:
            raise OrderNotFound(order_id=order_id)
        return order
    if user is not None and user.email == order.customer_email:
        return order
    if email and email.strip().lower() == order.customer_email:
        return order
    raise OrderNotFound(order_id=order_id)


@router.post("/orders", response_model=OrderResponse, status_code=201)
@limiter.limit(CHECKOUT_LIMIT)
def create_order(
    request: Request,
    body: CreateOrderRequest,
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    order = orders.create_draft_order(
        db,
        product_id=body.product_id,
        quantity=body.quantity,
        customer_email=str(body.customer_email),
        user_id=user.id if user else None,
    )
    return order_to_response(db, order)


@router.get("/orders", response_model=list[OrderResponse])
def list_my_orders(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return [order_to_response(db, o) for o in orders.list_orders_for_user(db, user.id)]


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    email: str | None = Query(None, description="Misafir siparişlerde sipariş e-postası"),
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    order = _load_visible_order(db, order_id, user, email, x_admin_secret)
    return order_to_response(db, order)


@router.post("/orders/{order_id}/coupon", response_model=OrderResponse)
@limiter.limit(GENERAL_LIMIT)
def apply_coupon(
    request: Request,
    order_id: int,
    body: ApplyCouponRequest,
    email: str | None = Query(None),
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    _load_visible_order(db, order_id, user, email)
    order = coupon_service.apply_coupon_to_order(
        db, order_id, body.code, user_id=user.id if user else None, currency=body.currency,
    )
    return order_to_response(db, order)


@router.post("/payments/{method}/intent", response_model=IntentResponse)
@limiter.limit(CHECKOUT_LIMIT)
def create_intent(
    request: Request,
    method: str,
    body: CreateIntentRequest,
    email: str | None = Query(None),
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Tutar istemciden alınmaz; siparişin yetkili tutarı kullanılır."""
    _load_visible_order(db, body.order_id, user, email)
    result = orchestrator.create_intent(body.order_id, method, body.currency, get_client_ip(request))
    return IntentResponse(
        transaction_number=result.payment.transaction_number,
        order_id=result.order.id,
        amount=result.payment.amount,
        currency=result.payment.currency,
        method=result.payment.method,
        remote_id=result.remote_id,
        client_secret_or_approval_url=result.client_secret_or_approval_url,
    )


@router.post("/payments/{method}/webhook", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    method: str,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """
    İmza, gövde ayrıştırılmadan önce doğrulanır. Aynı olayın tekrar gelmesi no-op'tur.
    Ham gövde async okunur; sağlayıcı doğrulama çağrıları ve DB işleri thread pool'da çalışır.
    """
    raw_body = await request.body()
    result = await run_in_threadpool(
        orchestrator.handle_webhook, method, raw_body, dict(request.headers), get_client_ip(request),
    )
    log.info("Webhook handled: method=%s type=%s status=%s order_id=%s", method, result.event_type, result.status, result.order_id)
    return WebhookResponse(status=result.status)
