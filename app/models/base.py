from datetime import datetime, timezone


def utcnow() -> datetime:
    """UTC şimdi (naive; veritabanıyla uyumlu)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Saat dilimli değeri UTC'ye çevirip naive yapar; naive değer zaten UTC kabul edilir."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
