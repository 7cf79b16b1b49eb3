"""Ödeme sağlayıcısı sözleşmesi: uzak niyet, webhook imza doğrulama, iade, olay ayrıştırma."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping

EVENT_CAPTURED = "captured"
EVENT_FAILED = "failed"
EVENT_IGNORED = "ignored"


@dataclass
class RemoteIntent:
    remote_id: str
    client_secret_or_approval_url: str | None


@dataclass
class RemoteRefund:
    remote_refund_id: str | None
    status: str  # pending | succeeded | failed


@dataclass
class WebhookEvent:
    """Sağlayıcıdan bağımsız webhook olayı. Tutar kuruş/cent cinsindendir."""

    kind: str  # captured | failed | ignored
    event_type: str
    transaction_number: str | None = None
    order_id: int | None = None
    external_id: str | None = None
    remote_order_id: str | None = None
    amount_minor: int | None = None
    currency: str | None = None
    raw: dict = field(default_factory=dict, repr=False)


def lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {str(k).lower(): v for k, v in (headers or {}).items()}


def parse_order_id(value) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class GatewayAdapter(ABC):
    """Her sağlayıcı aynı dört işlemi uygular; seçim ödemenin method alanıyla yapılır."""

    name: str = ""
    # İmza reddinde dönülecek HTTP kodu
    signature_error_status: int = 400
    webhook_secret: str = ""

    @abstractmethod
    def create_remote_intent(
        self,
        amount_minor: int,
        currency: str,
        correlation_id: str,
        metadata: dict | None = None,
    ) -> RemoteIntent:
        ...

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str], secret: str) -> bool:
        ...

    @abstractmethod
    def create_remote_refund(
        self,
        remote_charge_id: str,
        amount_minor: int,
        currency: str,
        reason: str | None = None,
    ) -> RemoteRefund:
        ...

    @abstractmethod
    def parse_event(self, raw_body: bytes) -> WebhookEvent:
        ...
