"""İade akışı: sağlayıcı iadesi + ödeme/sipariş/indirme hakları tek commit; çift iade yok."""
import pytest
from sqlmodel import select

from app.models import AuditLog, Coupon, DownloadGrant, Payment, Refund
from app.models.base import utcnow
from app.services import orders
from conftest import ADMIN_HEADERS


@pytest.fixture
def paid_order(make_product, place_order, create_intent, send_webhook):
    """Tahsil edilip teslim edilmiş dijital ürün siparişi."""
    def _paid(price=5000, method="stripe"):
        product = make_product(price=price, product_type="digital")
        order = place_order(product.id)
        intent = create_intent(order["id"], method=method)
        r = send_webhook(method, intent["transaction_number"], price, external_id=intent["remote_id"])
        assert r.json()["status"] == "settled", r.text
        return order, intent

    return _paid


def _refund(client, order_id, reason=None):
    body = {"reason": reason} if reason else None
    return client.post(f"/admin/orders/{order_id}/refund", headers=ADMIN_HEADERS, json=body)


def test_refund_success(client, db, paid_order, stripe_gateway):
    order, intent = paid_order(price=5000)
    r = _refund(client, order["id"], reason="Müşteri vazgeçti")
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["status"] == "succeeded"
    assert j["amount"] == 5000
    assert j["provider"] == "stripe"
    assert j["provider_refund_id"] == "stripe_refund_1"
    assert stripe_gateway.refunds == [
        {"charge": intent["remote_id"], "amount": 5000, "currency": "usd", "reason": "Müşteri vazgeçti"}
    ]

    db.expire_all()
    assert orders.get_order(db, order["id"]).status == "refunded"
    assert db.exec(select(Payment)).one().status == "refunded"
    grant = db.exec(select(DownloadGrant)).one()
    assert grant.expires_at <= utcnow()
    audit = db.exec(select(AuditLog).where(AuditLog.event == "order_refunded")).all()
    assert len(audit) == 1
    assert "reason=Müşteri vazgeçti" in audit[0].detail


def test_second_refund_is_rejected(client, db, paid_order, stripe_gateway):
    order, _ = paid_order()
    assert _refund(client, order["id"]).status_code == 200
    r = _refund(client, order["id"])
    assert r.status_code == 409
    assert r.json()["error"] == "ALREADY_REFUNDED"
    assert len(stripe_gateway.refunds) == 1
    db.expire_all()
    assert len(db.exec(select(Refund).where(Refund.status == "succeeded")).all()) == 1


def test_pending_order_is_not_refundable(client, make_product, place_order, stripe_gateway):
    product = make_product(product_type="digital")
    order = place_order(product.id)
    r = _refund(client, order["id"])
    assert r.status_code == 409
    assert r.json()["error"] == "ORDER_NOT_REFUNDABLE"
    assert stripe_gateway.refunds == []


def test_unknown_order_404(client):
    assert _refund(client, 999).status_code == 404


def test_gateway_failure_records_failed_refund_then_retry(client, db, paid_order, stripe_gateway):
    order, _ = paid_order()
    stripe_gateway.refund_error = "Stripe hatası: charge_already_refunded"
    r = _refund(client, order["id"])
    assert r.status_code == 502
    assert r.json()["error"] == "GATEWAY_ERROR"

    db.expire_all()
    assert [x.status for x in db.exec(select(Refund)).all()] == ["failed"]
    assert orders.get_order(db, order["id"]).status == "completed"
    assert db.exec(select(Payment)).one().status == "paid"

    stripe_gateway.refund_error = None
    r = _refund(client, order["id"])
    assert r.status_code == 200
    db.expire_all()
    assert orders.get_order(db, order["id"]).status == "refunded"


def test_provider_declined_refund(client, db, paid_order, stripe_gateway):
    order, _ = paid_order()
    stripe_gateway.refund_status = "failed"
    r = _refund(client, order["id"])
    assert r.status_code == 502
    db.expire_all()
    assert db.exec(select(Refund)).one().provider_refund_id == "stripe_refund_1"
    assert orders.get_order(db, order["id"]).status == "completed"


def test_pending_provider_refund_blocks_retry(client, db, paid_order, paypal_gateway):
    order, _ = paid_order(method="paypal")
    paypal_gateway.refund_status = "pending"
    r = _refund(client, order["id"])
    assert r.status_code == 200
    assert r.json()["status"] == "pending"

    db.expire_all()
    assert orders.get_order(db, order["id"]).status == "completed"
    assert db.exec(select(Payment)).one().status == "paid"

    r = _refund(client, order["id"])
    assert r.status_code == 409
    assert r.json()["error"] == "INVALID_STATE"
    assert len(paypal_gateway.refunds) == 1


def test_refund_requires_admin_secret(client, paid_order):
    order, _ = paid_order()
    r = client.post(f"/admin/orders/{order['id']}/refund")
    assert r.status_code == 403
    r = client.post(f"/admin/orders/{order['id']}/refund", headers={"X-Admin-Secret": "wrong"})
    assert r.status_code == 403


def test_refund_does_not_restore_coupon_usage(client, db, make_product, place_order, create_intent, send_webhook):
    product = make_product(price=10000, product_type="digital")
    order = place_order(product.id)
    client.post("/admin/coupons", headers=ADMIN_HEADERS, json={"code": "SAVE10", "type": "percentage", "amount": 10})
    client.post(f"/api/orders/{order['id']}/coupon", params={"email": "buyer@example.com"}, json={"code": "SAVE10"})
    intent = create_intent(order["id"])
    assert send_webhook("stripe", intent["transaction_number"], 9000).json()["status"] == "settled"

    r = _refund(client, order["id"])
    assert r.status_code == 200
    assert r.json()["amount"] == 9000
    db.expire_all()
    assert db.exec(select(Coupon)).one().used_count == 1


def test_admin_order_detail_lists_refunds(client, paid_order):
    order, intent = paid_order()
    _refund(client, order["id"])
    r = client.get(f"/admin/orders/{order['id']}", headers=ADMIN_HEADERS)
    assert r.status_code == 200
    j = r.json()
    assert j["order"]["status"] == "refunded"
    assert j["payments"][0]["transaction_number"] == intent["transaction_number"]
    assert j["payments"][0]["status"] == "refunded"
    assert [x["status"] for x in j["refunds"]] == ["succeeded"]
    assert j["download_grants"] == 1


def test_refund_of_processing_order_after_stock_shortage(
    client, db, make_product, place_order, create_intent, send_webhook, stripe_gateway
):
    product = make_product(price=5000, codes=1)
    first = place_order(product.id)
    second = place_order(product.id)
    first_intent = create_intent(first["id"])
    second_intent = create_intent(second["id"])
    assert send_webhook("stripe", first_intent["transaction_number"], 5000).json()["status"] == "settled"
    r = send_webhook("stripe", second_intent["transaction_number"], 5000, external_id="ext_capture_2")
    assert r.json()["error"] == "INSUFFICIENT_STOCK"

    r = _refund(client, second["id"], reason="Stok yok")
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "succeeded"
    assert r.json()["amount"] == 5000
    assert stripe_gateway.refunds == [
        {"charge": "ext_capture_2", "amount": 5000, "currency": "usd", "reason": "Stok yok"}
    ]

    db.expire_all()
    assert orders.get_order(db, second["id"]).status == "refunded"
    assert orders.get_order(db, first["id"]).status == "completed"
    payment = db.exec(select(Payment).where(Payment.order_id == second["id"])).one()
    assert payment.status == "refunded"
    refund = db.exec(select(Refund)).one()
    assert (refund.order_id, refund.payment_id, refund.status) == (second["id"], payment.id, "succeeded")


def test_completed_order_without_payment_is_not_refundable(client, db, make_product, place_order, stripe_gateway):
    product = make_product(product_type="digital")
    order = place_order(product.id)
    saved = orders.get_order(db, order["id"])
    saved.status = "completed"
    db.add(saved)
    db.commit()

    r = _refund(client, order["id"])
    assert r.status_code == 404
    assert r.json()["error"] == "NOT_FOUND"
    assert r.json()["message"] == "Bu sipariş için ödeme bulunamadı."
    assert stripe_gateway.refunds == []
    db.expire_all()
    assert db.exec(select(Refund)).all() == []
    assert orders.get_order(db, order["id"]).status == "completed"
