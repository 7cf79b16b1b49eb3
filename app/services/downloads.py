"""Dijital ürün indirme hakları."""
from datetime import timedelta

from sqlalchemy import or_, update
from sqlmodel import Session, select

from app.core.config import settings
from app.core.errors import NotFound
from app.models import DownloadGrant, Order
from app.models.base import utcnow
from app.services import catalog


def build_download_url(order_id: int, file_key: str) -> str:
    return f"/api/downloads/{order_id}/{file_key}"


def issue_download_grant(db: Session, order: Order, product_id: int) -> DownloadGrant:
    """Ürünün ilk dosyası için indirme hakkı ekler. Commit çağırana aittir (teslimat tek yazım)."""
    product_file = catalog.get_primary_file(db, product_id)
    if product_file is None:
        raise NotFound("Ürün için indirilebilir dosya yok.", product_id=product_id)
    now = utcnow()
    ttl_hours = settings.download_link_ttl_hours
    grant = DownloadGrant(
        order_id=order.id,
        user_id=order.user_id,
        product_id=product_id,
        product_file_id=product_file.id,
        download_url=build_download_url(order.id, product_file.file_key),
        max_downloads=product_file.max_downloads if product_file.max_downloads is not None else settings.download_max_count,
        expires_at=now + timedelta(hours=ttl_hours) if ttl_hours and ttl_hours > 0 else None,
        created_at=now,
    )
    db.add(grant)
    db.flush()
    return grant


def list_grants_for_order(db: Session, order_id: int) -> list[DownloadGrant]:
    stmt = select(DownloadGrant).where(DownloadGrant.order_id == order_id).order_by(DownloadGrant.id)
    return list(db.exec(stmt).all())


def expire_grants_for_order(db: Session, order_id: int) -> int:
    """Süresi dolmamış tüm hakları şimdi itibarıyla kapatır; kapatılan satır sayısını döner."""
    now = utcnow()
    stmt = (
        update(DownloadGrant)
        .where(
            DownloadGrant.order_id == order_id,
            or_(DownloadGrant.expires_at.is_(None), DownloadGrant.expires_at > now),
        )
        .values(expires_at=now)
        .execution_options(synchronize_session="fetch")
    )
    result = db.exec(stmt)
    return result.rowcount or 0
