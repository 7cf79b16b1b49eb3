"""
Logging yapılandırması.
Tüm handler'lara gizli anahtar maskeleme filtresi eklenir; tutar uyuşmazlığı ve
imza hataları sadece sunucu logunda detaylı yazılır.
"""
import logging
import re
import sys

# Stripe anahtarları, webhook secret'ları ve Authorization başlıkları
_SECRET_PATTERNS = (
    (re.compile(r"\b((?:sk|rk)_(?:live|test)_)[A-Za-z0-9]+"), r"\1***"),
    (re.compile(r"\b(whsec_)[A-Za-z0-9]+"), r"\1***"),
    (re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+"), r"\1 ***"),
)


def mask_secrets(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class SecretMaskingFilter(logging.Filter):
    """Biçimlenmiş mesajdaki anahtarları maskeler; kayıt her zaman geçer."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(level: int | str = logging.INFO, format_string: str | None = None) -> None:
    logging.basicConfig(
        level=level,
        format=format_string or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(SecretMaskingFilter())

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "dijipazar"):
        logging.getLogger(name).setLevel(level)
    # stripe SDK her isteği INFO seviyesinde loglar
    logging.getLogger("stripe").setLevel(logging.WARNING)
