"""Sipariş denetim kayıtları. Çağıran transaction'ın parçası olarak yazılır (commit çağırana ait)."""
import logging

from sqlmodel import Session

from app.models import AuditLog

log = logging.getLogger("dijipazar.audit")


def record_event(
    db: Session,
    event: str,
    order_id: int | None,
    detail: str | None = None,
    user_id: int | None = None,
    actor: str = "system",
) -> AuditLog:
    entry = AuditLog(event=event, order_id=order_id, user_id=user_id, actor=actor, detail=(detail or None) and detail[:2000])
    db.add(entry)
    log.info("audit event=%s order_id=%s actor=%s detail=%s", event, order_id, actor, detail)
    return entry


def log_order_status_change(
    db: Session,
    order_id: int,
    old_status: str,
    new_status: str,
    user_id: int | None = None,
    actor: str = "system",
) -> AuditLog:
    return record_event(db, "order_status_change", order_id, f"{old_status} -> {new_status}", user_id, actor)


def log_order_refund(
    db: Session,
    order_id: int,
    refund_id: int | None,
    amount: int,
    reason: str | None,
    user_id: int | None = None,
) -> AuditLog:
    detail = f"refund_id={refund_id} amount={amount}"
    if reason:
        detail += f" reason={reason}"
    return record_event(db, "order_refunded", order_id, detail, user_id, "admin")
