"""Ortak FastAPI bağımlılıkları: isteğe bağlı JWT kullanıcı, admin secret, istemci IP, ödeme akışı."""
import hmac

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.security import decode_access_token
from app.gateways import GatewayRegistry, get_gateways
from app.models import User
from app.services.checkout import CheckoutOrchestrator
from app.services.email_sender import send_order_confirmation_email

security = HTTPBearer(auto_error=False)


def get_client_ip(request: Request) -> str:
    """Proxy arkasında gerçek istemci IP (X-Forwarded-For ilk değer)."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or ""
    return request.client.host if request.client else ""


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User | None:
    """Token yoksa misafir (None). Token var ama geçersizse 401."""
    if not credentials:
        return None
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Geçersiz veya süresi dolmuş token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        user = db.get(User, int(payload["sub"]))
    except (TypeError, ValueError):
        user = None
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Kullanıcı bulunamadı.")
    return user


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Giriş yapmanız gerekiyor.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def _admin_secret_constant_time_compare(provided: str | None, expected: str | None) -> bool:
    """Timing-safe karşılaştırma; detay sızdırmaz."""
    p = (provided or "").encode("utf-8")
    e = (expected or "").encode("utf-8")
    return hmac.compare_digest(p, e)


def require_admin(x_admin_secret: str | None = Header(None, alias="X-Admin-Secret")) -> None:
    expected = (settings.admin_secret or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API yapılandırılmamış (ADMIN_SECRET yok).")
    if not _admin_secret_constant_time_compare(x_admin_secret, expected):
        raise HTTPException(status_code=403, detail="Yetkisiz.")


def get_mailer():
    """Sipariş onay e-postası gönderici; testlerde kaydedici ile değiştirilir."""
    return send_order_confirmation_email


def get_orchestrator(
    db: Session = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateways),
    mailer=Depends(get_mailer),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(db, gateways, mailer=mailer)
