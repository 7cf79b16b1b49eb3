import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Uvicorn nereden çalışırsa çalışsın .env proje kökünden yüklensin
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from app.api.admin import router as admin_router
from app.api.checkout import router as checkout_router
from app.api.deps import get_client_ip
from app.core.config import is_paypal_configured, is_stripe_configured, settings
from app.core.database import engine, init_db
from app.core.errors import CheckoutError
from app.core.rate_limit import limiter
from app.logging import setup_logging
from app.models import ErrorLog, SecurityLog

setup_logging(level=logging.INFO)
log = logging.getLogger("dijipazar")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info(
        "Gateways configured: stripe=%s paypal=%s environment=%s",
        "yes" if is_stripe_configured() else "NO",
        "yes" if is_paypal_configured() else "NO",
        settings.environment,
    )
    yield


app = FastAPI(
    title="Dijipazar API",
    description="Dijital ürün mağazası: sipariş, ödeme, teslimat ve iade",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": code, "message": message, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(CheckoutError)
def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("CheckoutError %s on %s: %s %s", exc.code, request.url.path, exc.message, exc.details)
    else:
        log.info("CheckoutError %s on %s: %s %s", exc.code, request.url.path, exc.message, exc.details)
    # Tutar/imza hatalarında hangi kontrolün başarısız olduğu dışarı verilmez
    message = exc.message if exc.expose_detail else exc.public_message
    return _error_response(request, exc.status_code, exc.code, message)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    try:
        with Session(engine) as db:
            db.add(SecurityLog(event="rate_limit", ip=get_client_ip(request) or None, endpoint=request.url.path, detail="Rate limit exceeded"))
            db.commit()
    except Exception as e:
        log.warning("SecurityLog rate_limit write failed: %s", e)
    return _error_response(request, 429, "RATE_LIMITED", "Çok fazla istek. Lütfen bir dakika bekleyin.")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.info("Request validation error (422): path=%s method=%s detail=%s", request.url.path, request.method, errs)
    first = errs[0] if errs else {}
    loc = [str(p) for p in (first.get("loc") or []) if p != "body"]
    message = first.get("msg") or "Geçersiz istek."
    if loc:
        message = f"{'.'.join(loc)}: {message}"
    return _error_response(request, 422, "VALIDATION_ERROR", message)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error_response(request, exc.status_code, "HTTP_ERROR", detail)


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=True)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                user_id=None,
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "INTERNAL_ERROR", "Beklenmeyen sunucu hatası.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(checkout_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "stripe_configured": is_stripe_configured(),
        "paypal_configured": is_paypal_configured(),
    }
