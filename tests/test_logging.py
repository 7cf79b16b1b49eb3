"""Log maskeleme: sağlayıcı anahtarları log satırına açık yazılmaz."""
import logging

from app.logging import SecretMaskingFilter, mask_secrets


def test_mask_secrets():
    assert mask_secrets("key=sk_live_abc123XYZ") == "key=sk_live_***"
    assert mask_secrets("secret whsec_9f8e7d") == "secret whsec_***"
    assert mask_secrets("Authorization: Bearer eyJ.abc.def") == "Authorization: Bearer ***"
    assert mask_secrets("txn=TXN-1-abc amount=5000") == "txn=TXN-1-abc amount=5000"


def test_filter_rewrites_formatted_record():
    record = logging.LogRecord("dijipazar.test", logging.INFO, __file__, 1, "Stripe key=%s", ("sk_test_123",), None)
    assert SecretMaskingFilter().filter(record) is True
    assert record.getMessage() == "Stripe key=sk_test_***"
