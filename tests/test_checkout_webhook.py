"""Webhook ile tahsilat ve teslimat: imza, tutar kontrolü, tekrar gelen olay, teslimat hatası."""
import asyncio

from sqlmodel import select

from app.models import AuditLog, DownloadGrant, InventoryItem, Payment, SecurityLog
from app.services import audit, inventory, orders
from conftest import ADMIN_HEADERS


def _audit_events(db, event):
    db.expire_all()
    return db.exec(select(AuditLog).where(AuditLog.event == event)).all()


def test_license_order_full_flow(client, db, make_product, place_order, create_intent, send_webhook, mailer):
    product = make_product(price=5000, codes=3, name="Oyun Anahtarı")
    order = place_order(product.id, quantity=2)
    intent = create_intent(order["id"])
    assert intent["amount"] == 10000

    r = send_webhook("stripe", intent["transaction_number"], 10000, order_id=order["id"], external_id=intent["remote_id"])
    assert r.status_code == 200, r.text
    assert r.json() == {"received": True, "status": "settled"}

    db.expire_all()
    saved = orders.get_order(db, order["id"])
    assert saved.status == "completed"
    assert saved.completed_at is not None
    assert saved.fulfillment_result.splitlines() == [
        "Oyun Anahtarı:",
        f"  KEY-{product.id}-0",
        f"  KEY-{product.id}-1",
    ]
    payment = db.exec(select(Payment)).one()
    assert payment.status == "paid"
    assert payment.paid_at is not None
    assert inventory.count_available(db, product.id) == 1

    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "buyer@example.com"
    assert mailer.sent[0]["amount"] == 10000
    assert "KEY-" in mailer.sent[0]["text"]

    detail = client.get(f"/admin/orders/{order['id']}", headers=ADMIN_HEADERS).json()
    assert detail["license_codes"] == 2
    assert detail["payments"][0]["status"] == "paid"


def test_redelivery_is_a_noop(client, db, make_product, place_order, create_intent, send_webhook, mailer):
    product = make_product(price=5000, codes=3)
    order = place_order(product.id)
    intent = create_intent(order["id"])

    assert send_webhook("stripe", intent["transaction_number"], 5000).json()["status"] == "settled"
    r = send_webhook("stripe", intent["transaction_number"], 5000)
    assert r.status_code == 200
    assert r.json()["status"] == "duplicate"

    db.expire_all()
    assert len(inventory.list_codes_for_order(db, order["id"])) == 1
    assert len(mailer.sent) == 1
    assert len(_audit_events(db, "order_fulfilled")) == 1


def test_amount_mismatch_is_rejected(client, db, make_product, place_order, create_intent, send_webhook, mailer):
    product = make_product(price=5000, codes=1)
    order = place_order(product.id)
    intent = create_intent(order["id"])

    r = send_webhook("stripe", intent["transaction_number"], 3000)
    assert r.status_code == 400
    j = r.json()
    assert j["error"] == "AMOUNT_MISMATCH"
    assert j["message"] == "Ödeme doğrulanamadı."

    db.expire_all()
    assert orders.get_order(db, order["id"]).status == "pending"
    assert db.exec(select(Payment)).one().status == "unpaid"
    assert inventory.count_available(db, product.id) == 1
    assert mailer.sent == []
    rows = _audit_events(db, "payment_amount_mismatch")
    assert len(rows) == 1
    assert "expected=5000" in rows[0].detail
    assert "reported=3000" in rows[0].detail


def test_currency_mismatch_is_rejected(client, db, make_product, place_order, create_intent, send_webhook):
    product = make_product(price=5000, codes=1)
    order = place_order(product.id)
    intent = create_intent(order["id"])
    r = send_webhook("stripe", intent["transaction_number"], 5000, currency="eur")
    assert r.status_code == 400
    assert r.json()["error"] == "AMOUNT_MISMATCH"


def test_invalid_signature_stripe_400(client, db, stripe_gateway, send_webhook):
    stripe_gateway.signature_valid = False
    r = send_webhook("stripe", "TXN-1", 5000)
    assert r.status_code == 400
    assert r.json()["error"] == "SIGNATURE_INVALID"
    db.expire_all()
    logs = db.exec(select(SecurityLog).where(SecurityLog.event == "webhook_signature_invalid")).all()
    assert len(logs) == 1
    assert logs[0].endpoint == "/api/payments/stripe/webhook"


def test_invalid_signature_paypal_401(client, db, paypal_gateway, send_webhook):
    paypal_gateway.signature_valid = False
    r = send_webhook("paypal", "TXN-1", 5000)
    assert r.status_code == 401
    assert r.json()["error"] == "SIGNATURE_INVALID"
    assert r.json()["message"] == "Geçersiz webhook imzası."


def test_unknown_payment_404(client, send_webhook):
    r = send_webhook("stripe", "TXN-does-not-exist", 5000, external_id="ext_unknown")
    assert r.status_code == 404


def test_payment_found_by_external_id(client, db, make_product, place_order, create_intent, send_webhook):
    product = make_product(price=5000, product_type="digital")
    order = place_order(product.id)
    intent = create_intent(order["id"])
    r = send_webhook("stripe", None, 5000, external_id=intent["remote_id"])
    assert r.json()["status"] == "settled"


def test_method_mismatch_is_rejected(client, make_product, place_order, create_intent, send_webhook):
    product = make_product(price=5000, product_type="digital")
    order = place_order(product.id)
    intent = create_intent(order["id"], method="stripe")
    r = send_webhook("paypal", intent["transaction_number"], 5000)
    assert r.status_code == 409


def test_event_for_other_order_is_rejected(client, make_product, place_order, create_intent, send_webhook):
    product = make_product(price=5000, product_type="digital")
    order = place_order(product.id)
    intent = create_intent(order["id"])
    r = send_webhook("stripe", intent["transaction_number"], 5000, order_id=order["id"] + 100)
    assert r.status_code == 409
    assert r.json()["error"] == "INVALID_STATE"


def test_failed_event_marks_payment_failed(client, db, make_product, place_order, create_intent, send_webhook):
    product = make_product(price=5000, product_type="digital")
    order = place_order(product.id)
    intent = create_intent(order["id"])
    r = send_webhook("stripe", intent["transaction_number"], 5000, kind="failed")
    assert r.json()["status"] == "failed"
    db.expire_all()
    assert db.exec(select(Payment)).one().status == "failed"
    assert orders.get_order(db, order["id"]).status == "pending"


def test_unrelated_event_is_ignored(client, send_webhook):
    r = send_webhook("stripe", None, None, kind="charge.updated")
    assert r.status_code == 200
    assert r.json()["status"] == "ignored"


def test_digital_order_gets_download_grant(client, db, make_product, place_order, create_intent, send_webhook, mailer):
    product = make_product(price=2000, product_type="digital", name="E-Kitap")
    order = place_order(product.id)
    intent = create_intent(order["id"], method="paypal")
    assert send_webhook("paypal", intent["transaction_number"], 2000).json()["status"] == "settled"

    db.expire_all()
    grants = db.exec(select(DownloadGrant)).all()
    assert len(grants) == 1
    assert grants[0].download_url == f"/api/downloads/{order['id']}/files/{product.id}.zip"
    saved = orders.get_order(db, order["id"])
    assert saved.status == "completed"
    assert saved.fulfillment_result == f"E-Kitap: {grants[0].download_url}"
    assert len(mailer.sent) == 1


def test_discounted_order_settles_on_total(client, db, make_product, place_order, create_intent, send_webhook):
    product = make_product(price=10000, product_type="digital")
    order = place_order(product.id)
    assert client.post("/admin/coupons", headers=ADMIN_HEADERS, json={"code": "SAVE10", "type": "percentage", "amount": 10}).status_code == 201
    client.post(f"/api/orders/{order['id']}/coupon", params={"email": "buyer@example.com"}, json={"code": "SAVE10"})
    intent = create_intent(order["id"])
    assert send_webhook("stripe", intent["transaction_number"], 10000).status_code == 400
    assert send_webhook("stripe", intent["transaction_number"], 9000).json()["status"] == "settled"


def test_fulfillment_shortage_leaves_order_processing(client, db, make_product, place_order, create_intent, send_webhook, mailer):
    product = make_product(price=5000, codes=1)
    first = place_order(product.id)
    second = place_order(product.id)
    first_intent = create_intent(first["id"])
    second_intent = create_intent(second["id"])

    assert send_webhook("stripe", first_intent["transaction_number"], 5000).json()["status"] == "settled"
    r = send_webhook("stripe", second_intent["transaction_number"], 5000, external_id="ext_capture_2")
    assert r.status_code == 409
    assert r.json()["error"] == "INSUFFICIENT_STOCK"

    db.expire_all()
    assert orders.get_order(db, second["id"]).status == "processing"
    assert orders.get_order(db, second["id"]).fulfillment_result is None
    assert db.exec(select(Payment).where(Payment.order_id == second["id"])).one().status == "paid"
    assert inventory.list_codes_for_order(db, second["id"]) == []
    assert db.exec(select(InventoryItem)).one().order_id == first["id"]
    assert len(_audit_events(db, "fulfillment_failed")) == 1
    assert len(mailer.sent) == 1

    # Aynı olayın tekrarı ikinci kez tahsil etmez
    assert send_webhook("stripe", second_intent["transaction_number"], 5000).json()["status"] == "duplicate"


def test_mailer_failure_does_not_undo_fulfillment(client, db, make_product, place_order, create_intent, send_webhook, mailer):
    mailer.error = RuntimeError("smtp down")
    product = make_product(price=5000, codes=1)
    order = place_order(product.id)
    intent = create_intent(order["id"])
    r = send_webhook("stripe", intent["transaction_number"], 5000)
    assert r.status_code == 200
    assert r.json()["status"] == "settled"
    db.expire_all()
    assert orders.get_order(db, order["id"]).status == "completed"
    assert len(inventory.list_codes_for_order(db, order["id"])) == 1


def test_webhook_handler_runs_off_event_loop(client, make_product, place_order, create_intent, send_webhook, stripe_gateway):
    threads = []
    verify = stripe_gateway.verify_webhook_signature

    def recording_verify(raw_body, headers, secret):
        try:
            asyncio.get_running_loop()
            threads.append("event_loop")
        except RuntimeError:
            threads.append("worker")
        return verify(raw_body, headers, secret)

    stripe_gateway.verify_webhook_signature = recording_verify
    product = make_product(price=5000, product_type="digital")
    order = place_order(product.id)
    intent = create_intent(order["id"])
    assert send_webhook("stripe", intent["transaction_number"], 5000).json()["status"] == "settled"
    assert threads == ["worker"]


def test_audit_failure_does_not_mask_fulfillment_error(
    client, db, monkeypatch, make_product, place_order, create_intent, send_webhook
):
    record_event = audit.record_event

    def failing_record_event(session, event, *args, **kwargs):
        if event == "fulfillment_failed":
            raise RuntimeError("audit table locked")
        return record_event(session, event, *args, **kwargs)

    monkeypatch.setattr(audit, "record_event", failing_record_event)
    product = make_product(price=5000, codes=0)
    order = place_order(product.id)
    intent = create_intent(order["id"])
    r = send_webhook("stripe", intent["transaction_number"], 5000)
    assert r.status_code == 409
    assert r.json()["error"] == "INSUFFICIENT_STOCK"
    db.expire_all()
    assert orders.get_order(db, order["id"]).status == "processing"
    assert _audit_events(db, "fulfillment_failed") == []


def test_capture_for_already_settled_order_is_acknowledged(
    client, db, make_product, place_order, create_intent, send_webhook, mailer
):
    product = make_product(price=5000, product_type="digital")
    order = place_order(product.id)
    first = create_intent(order["id"])
    second = create_intent(order["id"])
    assert send_webhook("stripe", first["transaction_number"], 5000).json()["status"] == "settled"

    r = send_webhook("stripe", second["transaction_number"], 5000, external_id="ext_capture_2")
    assert r.status_code == 200
    assert r.json()["status"] == "orphaned"

    db.expire_all()
    assert orders.get_order(db, order["id"]).status == "completed"
    by_txn = {p.transaction_number: p.status for p in db.exec(select(Payment)).all()}
    assert by_txn == {first["transaction_number"]: "paid", second["transaction_number"]: "unpaid"}
    events = _audit_events(db, "payment_captured_on_settled_order")
    assert len(events) == 1
    assert second["transaction_number"] in events[0].detail
    assert "external_id=ext_capture_2" in events[0].detail
    assert len(mailer.sent) == 1
