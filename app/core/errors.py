"""Ödeme/sipariş çekirdeğinin tipli hata sınıfları. main.py'deki handler bunları JSON'a çevirir."""


class CheckoutError(Exception):
    """Tüm çekirdek hatalarının tabanı: makine okunur kod + HTTP durum kodu."""

    code = "INTERNAL_ERROR"
    status_code = 500
    # False ise kimliği doğrulanmamış çağırana sadece genel mesaj gösterilir
    expose_detail = True
    public_message = "İşlem tamamlanamadı."

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.public_message
        self.details = details
        super().__init__(self.message)


class NotFound(CheckoutError):
    code = "NOT_FOUND"
    status_code = 404
    public_message = "Kayıt bulunamadı."


class OrderNotFound(NotFound):
    public_message = "Sipariş bulunamadı."


class PaymentNotFound(NotFound):
    public_message = "Bu sipariş için ödeme bulunamadı."


class ProductNotFound(NotFound):
    public_message = "Ürün bulunamadı veya satışta değil."


class CouponNotFound(NotFound):
    public_message = "Geçersiz indirim kodu."


class InvalidState(CheckoutError):
    code = "INVALID_STATE"
    status_code = 409
    public_message = "Kayıt bu işlem için uygun durumda değil."


class OrderNotPending(InvalidState):
    code = "ORDER_NOT_PENDING"
    public_message = "Sipariş ödeme beklemiyor."


class OrderNotRefundable(InvalidState):
    code = "ORDER_NOT_REFUNDABLE"
    public_message = "İade için sipariş tamamlanmış veya işleniyor olmalı."


class AlreadyRefunded(InvalidState):
    code = "ALREADY_REFUNDED"
    public_message = "Bu ödeme zaten iade edilmiş."


class ValidationFailed(CheckoutError):
    code = "VALIDATION_ERROR"
    status_code = 400
    public_message = "Geçersiz istek."


class AmountMismatch(CheckoutError):
    code = "AMOUNT_MISMATCH"
    status_code = 400
    expose_detail = False
    public_message = "Ödeme doğrulanamadı."


class PaymentAmountMismatch(AmountMismatch):
    code = "PAYMENT_AMOUNT_MISMATCH"
    status_code = 500


class InsufficientInventory(CheckoutError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409
    public_message = "Yetersiz stok."


class SignatureInvalid(CheckoutError):
    code = "SIGNATURE_INVALID"
    status_code = 400
    expose_detail = False
    public_message = "Geçersiz webhook imzası."


class GatewayError(CheckoutError):
    code = "GATEWAY_ERROR"
    status_code = 502
    public_message = "Ödeme sağlayıcısına ulaşılamadı."


class GatewayNotConfigured(CheckoutError):
    code = "CONFIGURATION_ERROR"
    status_code = 503
    public_message = "Ödeme yöntemi şu an aktif değil."
